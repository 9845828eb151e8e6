# civic_core/tenants/services.py
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional
from uuid import UUID

from django.db import transaction
from django.utils import timezone
from django.utils.text import slugify
from rest_framework.exceptions import ValidationError

from civic_core.audit.services import AuditService
from civic_core.common.api.exceptions import InvalidTransition
from civic_core.tenants.models import BillingStatus, LifecycleStatus, Tenant, TenantType

logger = logging.getLogger(__name__)

DEFAULT_TRIAL_DAYS = 15


def _unique_slug(name: str) -> str:
    base = slugify(name)[:56] or "tenant"
    slug = base
    n = 2
    while Tenant.objects.filter(slug=slug).exists():
        slug = f"{base}-{n}"
        n += 1
    return slug


class TenantService:
    """
    All Tenant mutations live here (write-model boundary).
    """

    @staticmethod
    @transaction.atomic
    def create(
        *,
        name: str,
        contact_email: str,
        slug: str = "",
        tenant_type: str = TenantType.MAIRIE,
        contact_name: str = "",
        siret: str = "",
        address: str = "",
        trial_days: Optional[int] = DEFAULT_TRIAL_DAYS,
        metadata: Optional[dict] = None,
        actor_user_id: int | None = None,
    ) -> Tenant:
        name = (name or "").strip()
        if not name:
            raise ValidationError({"name": "This field is required."})
        if tenant_type not in TenantType.values:
            raise ValidationError({"tenant_type": f"Invalid type. Allowed: {list(TenantType.values)}"})

        slug = (slug or "").strip() or _unique_slug(name)
        if Tenant.objects.filter(slug=slug).exists():
            raise ValidationError({"slug": "A tenant with this slug already exists."})

        trial_ends_at = timezone.now() + timedelta(days=trial_days) if trial_days else None

        tenant = Tenant.objects.create(
            name=name,
            slug=slug,
            tenant_type=tenant_type,
            contact_email=(contact_email or "").strip(),
            contact_name=contact_name or "",
            siret=siret or "",
            address=address or "",
            billing_status=BillingStatus.TRIAL,
            trial_ends_at=trial_ends_at,
            metadata=metadata or {},
        )
        AuditService.log(
            event_code="tenant.created",
            entity_type="Tenant",
            entity_id=tenant.id,
            tenant_id=tenant.id,
            actor_user_id=actor_user_id,
            metadata={"trial_ends_at": trial_ends_at},
        )
        logger.info("Tenant %s created (trial ends %s)", tenant.slug, trial_ends_at)
        return tenant

    @staticmethod
    @transaction.atomic
    def create_from_lead(
        *,
        lead_id: UUID,
        slug: str = "",
        trial_days: Optional[int] = DEFAULT_TRIAL_DAYS,
        actor_user_id: int | None = None,
    ) -> Tenant:
        """
        Convert a lead: create its tenant, attach the lead's quotes, orders and invoices,
        move the lead to CONVERTED.
        """
        from civic_core.invoices.models import Invoice, Payment
        from civic_core.leads.models import Lead, PipelineStage
        from civic_core.leads.services import LeadService
        from civic_core.mandates.models import MandateInvoice, MandateOrder
        from civic_core.quotes.models import Quote

        lead = Lead.objects.select_for_update().get(id=lead_id)
        if lead.converted_tenant_id:
            raise InvalidTransition("Lead has already been converted.")
        if lead.pipeline_stage == PipelineStage.LOST:
            raise InvalidTransition("A lost lead cannot be converted.")

        tenant = TenantService.create(
            name=lead.organisation_name,
            slug=slug,
            tenant_type=lead.tenant_type,
            contact_email=lead.email,
            contact_name=lead.contact_name,
            trial_days=trial_days,
            metadata={"lead_id": str(lead.id)},
            actor_user_id=actor_user_id,
        )

        now = timezone.now()
        Quote.objects.filter(lead=lead, tenant__isnull=True).update(tenant=tenant, updated_at=now)
        MandateOrder.objects.filter(quote__lead=lead, tenant__isnull=True).update(tenant=tenant, updated_at=now)
        MandateInvoice.objects.filter(order__quote__lead=lead, tenant__isnull=True).update(tenant=tenant, updated_at=now)
        Invoice.objects.filter(quote__lead=lead, tenant__isnull=True).update(tenant=tenant, updated_at=now)
        Payment.objects.filter(invoice__quote__lead=lead, tenant__isnull=True).update(tenant=tenant, updated_at=now)
        AuditService.attach_lead_to_tenant(lead_id=lead.id, tenant_id=tenant.id)

        LeadService.advance_for_event(
            lead_id=lead.id,
            stage=PipelineStage.CONVERTED,
            event="tenant.created",
            actor_user_id=actor_user_id,
            converted_tenant_id=tenant.id,
        )
        return tenant

    @staticmethod
    @transaction.atomic
    def set_lifecycle_status(*, tenant_id: UUID, status: str, actor_user_id: int | None = None) -> Tenant:
        if status not in LifecycleStatus.values:
            raise ValidationError({"status": f"Invalid status. Allowed: {list(LifecycleStatus.values)}"})

        t = Tenant.objects.select_for_update().get(id=tenant_id)

        # idempotent no-op
        if t.lifecycle_status == status:
            return t
        if t.is_archived:
            raise InvalidTransition("Archived tenants cannot change lifecycle status.")

        t.lifecycle_status = status
        fields = ["lifecycle_status", "updated_at"]
        if status == LifecycleStatus.ARCHIVED:
            t.archived_at = timezone.now()
            fields.append("archived_at")
        t.save(update_fields=fields)

        AuditService.log(
            event_code=f"tenant.{status.lower()}",
            entity_type="Tenant",
            entity_id=t.id,
            tenant_id=t.id,
            actor_user_id=actor_user_id,
        )
        return t

    @staticmethod
    @transaction.atomic
    def set_billing_status(*, tenant_id: UUID, status: str) -> Tenant:
        if status not in BillingStatus.values:
            raise ValidationError({"billing_status": f"Invalid status. Allowed: {list(BillingStatus.values)}"})

        t = Tenant.objects.select_for_update().get(id=tenant_id)
        if t.billing_status == status:
            return t

        t.billing_status = status
        t.save(update_fields=["billing_status", "updated_at"])
        logger.info("Tenant %s billing status -> %s", t.slug, status)
        return t

    @staticmethod
    def suspend(*, tenant_id: UUID, actor_user_id: int | None = None) -> Tenant:
        return TenantService.set_lifecycle_status(
            tenant_id=tenant_id, status=LifecycleStatus.SUSPENDED, actor_user_id=actor_user_id
        )

    @staticmethod
    def reactivate(*, tenant_id: UUID, actor_user_id: int | None = None) -> Tenant:
        return TenantService.set_lifecycle_status(
            tenant_id=tenant_id, status=LifecycleStatus.ACTIVE, actor_user_id=actor_user_id
        )

    @staticmethod
    @transaction.atomic
    def archive(*, tenant_id: UUID, actor_user_id: int | None = None) -> Tenant:
        # soft delete only; issued documents stay for accounting
        from civic_core.reminders.services import cancel_pending_reminders

        t = TenantService.set_lifecycle_status(
            tenant_id=tenant_id, status=LifecycleStatus.ARCHIVED, actor_user_id=actor_user_id
        )
        cancel_pending_reminders(tenant_id=t.id, reason="Tenant archived")
        return t
