# civic_core/leads/models.py
from __future__ import annotations

from django.db import models

from civic_core.common.models import UUIDModel
from civic_core.tenants.models import Tenant, TenantType


class PipelineStage(models.TextChoices):
    NEW = "NEW", "New"
    CONTACTED = "CONTACTED", "Contacted"
    QUOTED = "QUOTED", "Quoted"
    AWAITING_DECISION = "AWAITING_DECISION", "Awaiting decision"
    AWAITING_PAYMENT = "AWAITING_PAYMENT", "Awaiting payment"
    CONVERTED = "CONVERTED", "Converted"
    LOST = "LOST", "Lost"


# Forward order of the commercial pipeline. LOST sits outside it.
STAGE_ORDER = [
    PipelineStage.NEW,
    PipelineStage.CONTACTED,
    PipelineStage.QUOTED,
    PipelineStage.AWAITING_DECISION,
    PipelineStage.AWAITING_PAYMENT,
    PipelineStage.CONVERTED,
]

TERMINAL_STAGES = {PipelineStage.CONVERTED, PipelineStage.LOST}


def stage_rank(stage: str) -> int:
    return STAGE_ORDER.index(stage) if stage in STAGE_ORDER else len(STAGE_ORDER)


class Lead(UUIDModel):
    """
    Inbound prospect. Moves along the pipeline by staff action and,
    automatically, when its quotes are created / sent / accepted or it becomes a tenant.
    """
    organisation_name = models.CharField(max_length=255)
    tenant_type = models.CharField(max_length=16, choices=TenantType.choices, default=TenantType.MAIRIE)

    first_name = models.CharField(max_length=128, blank=True)
    last_name = models.CharField(max_length=128, blank=True)
    email = models.EmailField()
    phone = models.CharField(max_length=32, blank=True)
    message = models.TextField(blank=True)

    pipeline_stage = models.CharField(
        max_length=32,
        choices=PipelineStage.choices,
        default=PipelineStage.NEW,
        db_index=True,
    )
    stage_changed_at = models.DateTimeField(null=True, blank=True)
    last_contacted_at = models.DateTimeField(null=True, blank=True)
    lost_reason = models.TextField(blank=True)

    public_token = models.CharField(max_length=64, unique=True, null=True, blank=True)

    converted_tenant = models.ForeignKey(
        Tenant,
        on_delete=models.SET_NULL,
        related_name="source_leads",
        null=True,
        blank=True,
    )

    class Meta:
        db_table = "leads_lead"
        indexes = [
            models.Index(fields=["pipeline_stage", "created_at"]),
            models.Index(fields=["email"]),
        ]

    def __str__(self) -> str:
        return f"{self.organisation_name} <{self.email}>"

    @property
    def contact_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_terminal(self) -> bool:
        return self.pipeline_stage in TERMINAL_STAGES
