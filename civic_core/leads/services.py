# civic_core/leads/services.py
from __future__ import annotations

import logging
import secrets
from uuid import UUID

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from civic_core.audit.services import AuditService
from civic_core.common.api.exceptions import InvalidTransition
from civic_core.leads.models import Lead, PipelineStage, stage_rank
from civic_core.tenants.models import TenantType

logger = logging.getLogger(__name__)


def new_public_token() -> str:
    return secrets.token_urlsafe(32)


class LeadService:
    """
    Lead pipeline state machine.

      NEW -> CONTACTED -> QUOTED -> AWAITING_DECISION -> AWAITING_PAYMENT -> CONVERTED
      any non-terminal stage -> LOST

    Staff moves go through `move_to_stage`; document events go through
    `advance_for_event`, which only ever moves forward and never fails.
    """

    @staticmethod
    @transaction.atomic
    def create(
        *,
        organisation_name: str,
        email: str,
        first_name: str = "",
        last_name: str = "",
        phone: str = "",
        message: str = "",
        tenant_type: str = TenantType.MAIRIE,
        actor_user_id: int | None = None,
    ) -> Lead:
        organisation_name = (organisation_name or "").strip()
        email = (email or "").strip()
        if not organisation_name:
            raise ValidationError({"organisation_name": "This field is required."})
        if not email:
            raise ValidationError({"email": "This field is required."})

        lead = Lead.objects.create(
            organisation_name=organisation_name,
            email=email,
            first_name=first_name or "",
            last_name=last_name or "",
            phone=phone or "",
            message=message or "",
            tenant_type=tenant_type,
            pipeline_stage=PipelineStage.NEW,
            stage_changed_at=timezone.now(),
        )
        AuditService.log(
            event_code="lead.created",
            entity_type="Lead",
            entity_id=lead.id,
            lead_id=lead.id,
            actor_user_id=actor_user_id,
            metadata={"organisation_name": organisation_name},
        )
        return lead

    @staticmethod
    def _set_stage(lead: Lead, stage: str, *, event_code: str, actor_user_id: int | None, extra: dict | None = None) -> Lead:
        previous = lead.pipeline_stage
        lead.pipeline_stage = stage
        lead.stage_changed_at = timezone.now()
        lead.save(update_fields=["pipeline_stage", "stage_changed_at", "updated_at"])

        AuditService.log(
            event_code=event_code,
            entity_type="Lead",
            entity_id=lead.id,
            tenant_id=lead.converted_tenant_id,
            lead_id=lead.id,
            actor_user_id=actor_user_id,
            metadata={"from": previous, "to": stage, **(extra or {})},
        )
        logger.info("Lead %s moved %s -> %s", lead.id, previous, stage)
        return lead

    @staticmethod
    @transaction.atomic
    def move_to_stage(
        *,
        lead_id: UUID,
        stage: str,
        reason: str = "",
        actor_user_id: int | None = None,
    ) -> Lead:
        if stage not in PipelineStage.values:
            raise ValidationError({"stage": f"Invalid stage. Allowed: {list(PipelineStage.values)}"})

        lead = Lead.objects.select_for_update().get(id=lead_id)

        # idempotent no-op
        if lead.pipeline_stage == stage:
            return lead

        if lead.is_terminal:
            raise InvalidTransition(f"Lead is {lead.pipeline_stage}; its stage can no longer change.")

        if stage == PipelineStage.CONVERTED:
            raise InvalidTransition("A lead is converted by creating its tenant.")

        if stage == PipelineStage.LOST:
            lead.lost_reason = reason or ""
            lead.save(update_fields=["lost_reason", "updated_at"])
        elif stage_rank(stage) < stage_rank(lead.pipeline_stage):
            raise InvalidTransition(f"Cannot move lead back from {lead.pipeline_stage} to {stage}.")

        if stage == PipelineStage.CONTACTED:
            lead.last_contacted_at = timezone.now()
            lead.save(update_fields=["last_contacted_at", "updated_at"])

        return LeadService._set_stage(lead, stage, event_code="lead.stage_changed", actor_user_id=actor_user_id)

    @staticmethod
    @transaction.atomic
    def mark_contacted(*, lead_id: UUID, actor_user_id: int | None = None) -> Lead:
        lead = Lead.objects.select_for_update().get(id=lead_id)
        if lead.pipeline_stage == PipelineStage.NEW:
            lead.last_contacted_at = timezone.now()
            lead.save(update_fields=["last_contacted_at", "updated_at"])
            return LeadService._set_stage(
                lead, PipelineStage.CONTACTED, event_code="lead.stage_changed", actor_user_id=actor_user_id
            )

        # already further down the pipeline: only stamp the contact
        lead.last_contacted_at = timezone.now()
        lead.save(update_fields=["last_contacted_at", "updated_at"])
        return lead

    @staticmethod
    def mark_lost(*, lead_id: UUID, reason: str = "", actor_user_id: int | None = None) -> Lead:
        return LeadService.move_to_stage(
            lead_id=lead_id, stage=PipelineStage.LOST, reason=reason, actor_user_id=actor_user_id
        )

    @staticmethod
    @transaction.atomic
    def advance_for_event(
        *,
        lead_id: UUID,
        stage: str,
        event: str,
        actor_user_id: int | None = None,
        converted_tenant_id: UUID | None = None,
    ) -> Lead:
        """
        Automatic forward move driven by a document event.
        Terminal leads and leads already at/after `stage` are left untouched.
        """
        lead = Lead.objects.select_for_update().get(id=lead_id)

        if lead.is_terminal or stage_rank(lead.pipeline_stage) >= stage_rank(stage):
            logger.debug("Lead %s stays %s on %s", lead.id, lead.pipeline_stage, event)
            return lead

        if converted_tenant_id is not None:
            lead.converted_tenant_id = converted_tenant_id
            lead.save(update_fields=["converted_tenant", "updated_at"])

        return LeadService._set_stage(
            lead,
            stage,
            event_code="lead.stage_advanced",
            actor_user_id=actor_user_id,
            extra={"trigger": event},
        )

    @staticmethod
    @transaction.atomic
    def generate_public_token(*, lead_id: UUID) -> Lead:
        lead = Lead.objects.select_for_update().get(id=lead_id)
        if not lead.public_token:
            lead.public_token = new_public_token()
            lead.save(update_fields=["public_token", "updated_at"])
        return lead
