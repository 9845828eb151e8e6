# civic_core/reminders/api/views.py
from __future__ import annotations

from uuid import UUID

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.response import Response

from civic_core.common.api.pagination import paginate
from civic_core.reminders.api.serializers import RenewalReminderSerializer
from civic_core.reminders.models import RenewalReminder
from civic_core.reminders.selectors import reminders_filtered
from civic_core.reminders.services import RenewalReminderScheduler, cancel_reminder


class RenewalReminderViewSet(viewsets.GenericViewSet):
    """
    Renewal reminders (read-only, plus manual cancel and an on-demand run).
    """
    serializer_class = RenewalReminderSerializer
    queryset = RenewalReminder.objects.none()

    @extend_schema(
        tags=["Reminders"],
        responses={200: RenewalReminderSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="tenant", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="context", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request):
        tenant = request.query_params.get("tenant")
        try:
            tenant_id = UUID(str(tenant)) if tenant else None
        except ValueError:
            raise DRFValidationError({"tenant": "Invalid UUID"})

        qs = reminders_filtered(
            tenant_id=tenant_id,
            status=request.query_params.get("status") or None,
            context=request.query_params.get("context") or None,
        )
        return paginate(request, qs, RenewalReminderSerializer)

    @extend_schema(tags=["Reminders"], responses={200: RenewalReminderSerializer})
    def retrieve(self, request, pk=None):
        reminder = reminders_filtered().get(id=UUID(str(pk)))
        return Response(RenewalReminderSerializer(reminder).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Reminders"], request=None, responses={200: RenewalReminderSerializer})
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        reminder = cancel_reminder(reminder_id=UUID(str(pk)))
        return Response(RenewalReminderSerializer(reminder).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Reminders"], request=None, responses={200: OpenApiTypes.OBJECT})
    @action(detail=False, methods=["post"], url_path="run")
    def run(self, request):
        stats = RenewalReminderScheduler().run()
        return Response(stats.as_dict(), status=status.HTTP_200_OK)
