# civic_core/quotes/api/views.py
from __future__ import annotations

from uuid import UUID

from django.http import HttpResponse
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from civic_core.common.api.pagination import paginate
from civic_core.common.permissions import SalesPipelinePermission
from civic_core.documents.pdf import get_pdf_renderer, pdf_filename
from civic_core.quotes.api.serializers import (
    EmailRequestSerializer,
    PaymentMethodSerializer,
    PublicQuoteSerializer,
    QuoteAcceptSerializer,
    QuoteCreateSerializer,
    QuoteLineCreateSerializer,
    QuoteLineItemSerializer,
    QuoteSerializer,
    ReasonSerializer,
)
from civic_core.quotes.models import Quote
from civic_core.quotes.selectors import get_quote, get_quote_by_public_token, list_quotes
from civic_core.quotes.services import MandateDetails, QuoteService


def _uuid_or_none(value: str | None, field_name: str) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        raise DRFValidationError({field_name: "Invalid UUID"})


def _actor(request) -> int | None:
    return getattr(request.user, "id", None)


def _mandate_details(data: dict | None) -> MandateDetails | None:
    if not data:
        return None
    return MandateDetails(
        siret=data.get("siret", ""),
        billing_address=data.get("billing_address", ""),
        billing_service=data.get("billing_service", ""),
        use_chorus_pro=data.get("use_chorus_pro", False),
    )


class QuoteViewSet(viewsets.GenericViewSet):
    """
    Quotes (devis):
    - list/retrieve/create
    - lines: POST add, DELETE lines/<line_id>
    - payment_method, send, accept, reject
    - approve_mandate / reject_mandate
    - public_token, email, pdf
    """
    serializer_class = QuoteSerializer
    queryset = Quote.objects.none()
    permission_classes = [SalesPipelinePermission]

    @extend_schema(
        tags=["Quotes"],
        responses={200: QuoteSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="payment_method", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="lead", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="tenant", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(
                name="search",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                required=False,
                description="Matches quote number or client name.",
            ),
        ],
    )
    def list(self, request):
        qs = list_quotes(
            status=request.query_params.get("status") or None,
            payment_method=request.query_params.get("payment_method") or None,
            lead_id=_uuid_or_none(request.query_params.get("lead"), "lead"),
            tenant_id=_uuid_or_none(request.query_params.get("tenant"), "tenant"),
            search=request.query_params.get("search") or None,
        )
        return paginate(request, qs, QuoteSerializer)

    @extend_schema(tags=["Quotes"], responses={200: QuoteSerializer})
    def retrieve(self, request, pk=None):
        quote = get_quote(UUID(str(pk)))
        return Response(QuoteSerializer(quote).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Quotes"], request=QuoteCreateSerializer, responses={201: QuoteSerializer})
    def create(self, request):
        ser = QuoteCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        d = ser.validated_data

        lines = []
        for line in d.get("lines", []):
            lines.append(
                {
                    "description": line.get("description", ""),
                    "quantity": line.get("quantity", 1),
                    "unit_price": line.get("unit_price"),
                    "plan_id": line.get("plan"),
                    "addon_id": line.get("addon"),
                    "billing_interval": line.get("billing_interval"),
                }
            )

        quote = QuoteService.create(
            lead_id=d.get("lead"),
            tenant_id=d.get("tenant"),
            client_name=d.get("client_name", ""),
            client_email=d.get("client_email", ""),
            client_address=d.get("client_address", ""),
            client_siret=d.get("client_siret", ""),
            source=d.get("source"),
            payment_method=d.get("payment_method"),
            tax_rate=d.get("tax_rate"),
            valid_until=d.get("valid_until"),
            notes=d.get("notes", ""),
            lines=lines,
            actor_user_id=_actor(request),
        )
        return Response(QuoteSerializer(get_quote(quote.id)).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Quotes"], request=QuoteLineCreateSerializer, responses={201: QuoteLineItemSerializer})
    @action(detail=True, methods=["post"], url_path="lines")
    def lines(self, request, pk=None):
        ser = QuoteLineCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        line = QuoteService.add_line_item(quote_id=UUID(str(pk)), **ser.to_service_kwargs())
        return Response(QuoteLineItemSerializer(line).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Quotes"], responses={200: QuoteSerializer})
    @action(detail=True, methods=["delete"], url_path=r"lines/(?P<line_id>[^/.]+)")
    def remove_line(self, request, pk=None, line_id=None):
        quote = QuoteService.remove_line_item(
            quote_id=UUID(str(pk)),
            line_id=_uuid_or_none(line_id, "line_id"),
        )
        return Response(QuoteSerializer(get_quote(quote.id)).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Quotes"], request=PaymentMethodSerializer, responses={200: QuoteSerializer})
    @action(detail=True, methods=["post"], url_path="payment_method")
    def payment_method(self, request, pk=None):
        ser = PaymentMethodSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        quote = QuoteService.set_payment_method(
            quote_id=UUID(str(pk)),
            payment_method=ser.validated_data["payment_method"],
            actor_user_id=_actor(request),
        )
        return Response(QuoteSerializer(get_quote(quote.id)).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Quotes"], request=None, responses={200: QuoteSerializer})
    @action(detail=True, methods=["post"], url_path="send")
    def send(self, request, pk=None):
        quote = QuoteService.send(quote_id=UUID(str(pk)), actor_user_id=_actor(request))
        return Response(QuoteSerializer(get_quote(quote.id)).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Quotes"], request=QuoteAcceptSerializer, responses={200: QuoteSerializer})
    @action(detail=True, methods=["post"], url_path="accept")
    def accept(self, request, pk=None):
        ser = QuoteAcceptSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        d = ser.validated_data

        quote = QuoteService.accept(
            quote_id=UUID(str(pk)),
            accepted_by_name=d.get("accepted_by_name", ""),
            accepted_by_email=d.get("accepted_by_email", ""),
            payment_method=d.get("payment_method"),
            mandate_details=_mandate_details(d.get("mandate")),
            actor_user_id=_actor(request),
        )
        return Response(QuoteSerializer(get_quote(quote.id)).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Quotes"], request=ReasonSerializer, responses={200: QuoteSerializer})
    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, pk=None):
        ser = ReasonSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        quote = QuoteService.reject(
            quote_id=UUID(str(pk)),
            reason=ser.validated_data.get("reason", ""),
            actor_user_id=_actor(request),
        )
        return Response(QuoteSerializer(get_quote(quote.id)).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Quotes"], request=None, responses={200: QuoteSerializer})
    @action(detail=True, methods=["post"], url_path="approve_mandate")
    def approve_mandate(self, request, pk=None):
        quote = QuoteService.approve_mandate(quote_id=UUID(str(pk)), actor_user_id=_actor(request))
        return Response(QuoteSerializer(get_quote(quote.id)).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Quotes"], request=ReasonSerializer, responses={200: QuoteSerializer})
    @action(detail=True, methods=["post"], url_path="reject_mandate")
    def reject_mandate(self, request, pk=None):
        ser = ReasonSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        quote = QuoteService.reject_mandate(
            quote_id=UUID(str(pk)),
            reason=ser.validated_data.get("reason", ""),
            actor_user_id=_actor(request),
        )
        return Response(QuoteSerializer(get_quote(quote.id)).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Quotes"], request=None, responses={200: OpenApiTypes.OBJECT})
    @action(detail=True, methods=["post"], url_path="public_token")
    def public_token(self, request, pk=None):
        quote = QuoteService.generate_public_token(quote_id=UUID(str(pk)))
        return Response(
            {"public_token": quote.public_token, "public_url": QuoteService.public_url(quote)},
            status=status.HTTP_200_OK,
        )

    @extend_schema(tags=["Quotes"], request=EmailRequestSerializer, responses={200: QuoteSerializer})
    @action(detail=True, methods=["post"], url_path="email")
    def email(self, request, pk=None):
        ser = EmailRequestSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        quote = QuoteService.email_to_client(
            quote_id=UUID(str(pk)),
            to=ser.validated_data.get("to", ""),
            actor_user_id=_actor(request),
        )
        return Response(QuoteSerializer(get_quote(quote.id)).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Quotes"], responses={(200, "application/pdf"): OpenApiTypes.BINARY})
    @action(detail=True, methods=["get"], url_path="pdf")
    def pdf(self, request, pk=None):
        quote = get_quote(UUID(str(pk)))
        content = get_pdf_renderer().render_quote(quote)

        resp = HttpResponse(content, content_type="application/pdf")
        resp["Content-Disposition"] = f'inline; filename="{pdf_filename(quote.quote_number)}"'
        return resp


class PublicQuoteView(APIView):
    """
    /public/quotes/<token>/: client self-service, token is the credential.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    @extend_schema(tags=["Public"], responses={200: PublicQuoteSerializer})
    def get(self, request, token: str):
        quote = get_quote_by_public_token(token)
        return Response(PublicQuoteSerializer(quote).data, status=status.HTTP_200_OK)


class PublicQuoteAcceptView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    @extend_schema(tags=["Public"], request=QuoteAcceptSerializer, responses={200: PublicQuoteSerializer})
    def post(self, request, token: str):
        ser = QuoteAcceptSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        d = ser.validated_data

        quote = get_quote_by_public_token(token)
        quote = QuoteService.accept(
            quote_id=quote.id,
            accepted_by_name=d.get("accepted_by_name", ""),
            accepted_by_email=d.get("accepted_by_email", ""),
            payment_method=d.get("payment_method"),
            mandate_details=_mandate_details(d.get("mandate")),
        )
        return Response(PublicQuoteSerializer(get_quote(quote.id)).data, status=status.HTTP_200_OK)
