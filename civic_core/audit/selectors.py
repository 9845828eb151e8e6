# civic_core/audit/selectors.py
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from django.db.models import Q, QuerySet

from civic_core.audit.models import AuditEvent


def timeline(
    *,
    tenant_id: UUID | None = None,
    lead_id: UUID | None = None,
    entity_type: str | None = None,
    entity_id: UUID | None = None,
    event_code: str | None = None,
    since: datetime | None = None,
) -> QuerySet[AuditEvent]:
    """
    Newest first. Passing both tenant_id and lead_id returns the union,
    which is the full commercial history of a converted client.
    """
    qs = AuditEvent.objects.all()

    if tenant_id and lead_id:
        qs = qs.filter(Q(tenant_id=tenant_id) | Q(lead_id=lead_id))
    elif tenant_id:
        qs = qs.filter(tenant_id=tenant_id)
    elif lead_id:
        qs = qs.filter(lead_id=lead_id)

    if entity_type:
        qs = qs.filter(entity_type=entity_type)
    if entity_id:
        qs = qs.filter(entity_id=entity_id)
    if event_code:
        # "quote." matches every quote event
        qs = qs.filter(event_code__startswith=event_code) if event_code.endswith(".") else qs.filter(event_code=event_code)
    if since:
        qs = qs.filter(occurred_at__gte=since)

    return qs.order_by("-occurred_at")
