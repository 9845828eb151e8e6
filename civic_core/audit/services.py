# civic_core/audit/services.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional
from uuid import UUID

from django.core.serializers.json import DjangoJSONEncoder

from civic_core.audit.models import AuditEvent

logger = logging.getLogger(__name__)


def _json_safe(metadata: Dict[str, Any]) -> Dict[str, Any]:
    # Decimal / date / UUID values become strings
    return json.loads(json.dumps(metadata, cls=DjangoJSONEncoder))


class AuditService:
    """
    Writes the activity journal. Rows are never updated afterwards, except
    for `attach_lead_to_tenant` which only fills a missing tenant_id.
    """

    @staticmethod
    def log(
        *,
        event_code: str,
        entity_type: str,
        entity_id: UUID,
        tenant_id: UUID | None = None,
        lead_id: UUID | None = None,
        actor_user_id: int | None = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        event = AuditEvent.objects.create(
            tenant_id=tenant_id,
            lead_id=lead_id,
            event_code=event_code,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_user_id=actor_user_id,
            metadata=_json_safe(metadata or {}),
        )
        logger.debug("audit %s %s:%s", event_code, entity_type, entity_id)
        return event

    @staticmethod
    def attach_lead_to_tenant(*, lead_id: UUID, tenant_id: UUID) -> int:
        """Prospect-stage events join the new tenant's timeline."""
        return AuditEvent.objects.filter(lead_id=lead_id, tenant_id__isnull=True).update(tenant_id=tenant_id)
