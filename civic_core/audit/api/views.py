# civic_core/audit/api/views.py
from __future__ import annotations

from uuid import UUID

from dateutil.parser import isoparse
from django.utils import timezone
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import viewsets
from rest_framework.exceptions import ValidationError as DRFValidationError

from civic_core.audit.api.serializers import AuditEventSerializer
from civic_core.audit.models import AuditEvent
from civic_core.audit.selectors import timeline
from civic_core.common.api.pagination import paginate


def _uuid_param(request, name: str) -> UUID | None:
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        raise DRFValidationError({name: "Invalid UUID"})


def _since_param(request):
    raw = request.query_params.get("since")
    if not raw:
        return None
    try:
        value = isoparse(raw)
    except ValueError:
        raise DRFValidationError({"since": "Expected an ISO 8601 date or datetime."})
    if timezone.is_naive(value):
        value = timezone.make_aware(value)
    return value


class AuditEventViewSet(viewsets.GenericViewSet):
    """
    Commercial timeline of a tenant or lead (read-only).
    """
    serializer_class = AuditEventSerializer
    queryset = AuditEvent.objects.none()

    @extend_schema(
        tags=["Audit"],
        responses={200: AuditEventSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="tenant_id", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="lead_id", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(
                name="entity_type",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                required=False,
                description="Quote, MandateOrder, MandateInvoice, Subscription, Lead or Tenant.",
            ),
            OpenApiParameter(name="entity_id", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(
                name="event_code",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                required=False,
                description="Exact code (quote.accepted) or a prefix ending with a dot (invoice.).",
            ),
            OpenApiParameter(name="since", type=OpenApiTypes.DATETIME, location=OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request):
        qs = timeline(
            tenant_id=_uuid_param(request, "tenant_id"),
            lead_id=_uuid_param(request, "lead_id"),
            entity_type=request.query_params.get("entity_type") or None,
            entity_id=_uuid_param(request, "entity_id"),
            event_code=request.query_params.get("event_code") or None,
            since=_since_param(request),
        )
        return paginate(request, qs, AuditEventSerializer)
