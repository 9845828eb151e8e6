# civic_core/audit/models.py
from django.db import models

from civic_core.common.models import UUIDModel


class AuditEvent(UUIDModel):
    """
    Immutable activity record, one per document transition.

    Events raised while the client is still a prospect carry `lead_id`;
    they are re-attached to the tenant when the lead converts, so a tenant's
    timeline starts with its first quote.
    """
    tenant_id = models.UUIDField(null=True, blank=True, db_index=True)
    lead_id = models.UUIDField(null=True, blank=True, db_index=True)

    event_code = models.CharField(max_length=64, db_index=True)  # "<entity>.<verb>", e.g. "quote.accepted"
    entity_type = models.CharField(max_length=64)
    entity_id = models.UUIDField(db_index=True)

    # staff user id; None for client self-service, webhooks and the scheduler
    actor_user_id = models.IntegerField(null=True, blank=True)

    occurred_at = models.DateTimeField(auto_now_add=True, db_index=True)
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = "audit_event"
        ordering = ("-occurred_at",)
        indexes = [
            models.Index(fields=["tenant_id", "occurred_at"]),
            models.Index(fields=["lead_id", "occurred_at"]),
            models.Index(fields=["entity_type", "entity_id"]),
        ]

    def __str__(self) -> str:
        return f"{self.event_code} {self.entity_type}:{self.entity_id}"

    @property
    def is_automatic(self) -> bool:
        return self.actor_user_id is None
