# civic_core/subscriptions/api/views.py
from __future__ import annotations

import json
import logging
from uuid import UUID

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ParseError, PermissionDenied
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from civic_core.common.api.pagination import paginate
from civic_core.common.conf import load_billing_settings
from civic_core.subscriptions.api.serializers import RenewSerializer, SubscriptionSerializer
from civic_core.subscriptions.models import Subscription
from civic_core.subscriptions.selectors import history_for_tenant, subscription_qs
from civic_core.subscriptions.services import CardWebhookEvent, SubscriptionService, verify_card_signature

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Card-Signature"


class SubscriptionViewSet(viewsets.GenericViewSet):
    serializer_class = SubscriptionSerializer
    queryset = Subscription.objects.none()

    @extend_schema(
        tags=["Subscriptions"],
        responses={200: SubscriptionSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="tenant", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(
                name="current",
                type=OpenApiTypes.BOOL,
                location=OpenApiParameter.QUERY,
                required=False,
                description="Only current windows.",
            ),
        ],
    )
    def list(self, request):
        tenant = request.query_params.get("tenant")
        if tenant:
            try:
                qs = history_for_tenant(UUID(str(tenant)))
            except ValueError:
                raise DRFValidationError({"tenant": "Invalid UUID"})
        else:
            qs = subscription_qs()

        if str(request.query_params.get("current", "")).lower() in {"1", "true", "yes"}:
            qs = qs.filter(is_current=True)
        grace = load_billing_settings().grace_period_days
        return paginate(request, qs, SubscriptionSerializer, context={"grace_period_days": grace})

    @extend_schema(tags=["Subscriptions"], responses={200: SubscriptionSerializer})
    def retrieve(self, request, pk=None):
        sub = subscription_qs().get(id=UUID(str(pk)))
        return Response(SubscriptionSerializer(sub).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Subscriptions"], request=RenewSerializer, responses={201: SubscriptionSerializer})
    @action(detail=True, methods=["post"], url_path="renew")
    def renew(self, request, pk=None):
        ser = RenewSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        sub = SubscriptionService.renew(
            subscription_id=UUID(str(pk)),
            duration_months=ser.validated_data.get("duration_months"),
            actor_user_id=getattr(request.user, "id", None),
        )
        return Response(SubscriptionSerializer(sub).data, status=status.HTTP_201_CREATED)


class CardWebhookView(APIView):
    """
    /billing/card-webhook/: normalized events from the card processor.
    Authenticated by HMAC-SHA256 of the raw body (hex) in X-Card-Signature.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    @extend_schema(tags=["Subscriptions"], request=OpenApiTypes.OBJECT, responses={200: OpenApiTypes.OBJECT})
    def post(self, request):
        payload = request.body
        signature = request.headers.get(SIGNATURE_HEADER, "")

        if not verify_card_signature(payload, signature, load_billing_settings().card_webhook_secret):
            logger.warning("Invalid card webhook signature: %s...", signature[:10])
            raise PermissionDenied("Invalid signature.")

        try:
            data = json.loads(payload)
        except ValueError:
            raise ParseError("Invalid JSON.")
        if not isinstance(data, dict):
            raise ParseError("Expected a JSON object.")

        event = CardWebhookEvent.from_payload(data)
        sub = SubscriptionService.activate_from_card_webhook(event)
        if sub is None:
            return Response({"status": "ignored"}, status=status.HTTP_200_OK)
        return Response(
            {"status": "processed", "subscription": SubscriptionSerializer(sub).data},
            status=status.HTTP_200_OK,
        )
