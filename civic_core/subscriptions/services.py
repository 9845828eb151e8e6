# civic_core/subscriptions/services.py
from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional
from uuid import UUID

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta
from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from civic_core.audit.services import AuditService
from civic_core.catalog.models import BillingInterval, Plan
from civic_core.common.api.exceptions import InvalidTransition
from civic_core.mandates.models import InvoiceStatus, MandateInvoice
from civic_core.subscriptions.models import Rail, Subscription, SubscriptionStatus
from civic_core.tenants.models import BillingStatus, Tenant

logger = logging.getLogger(__name__)

EVENT_ACTIVE = "subscription.active"
EVENT_CANCELLED = "subscription.cancelled"


def verify_card_signature(payload: bytes, signature: str, secret: str) -> bool:
    if not secret or not signature:
        return False
    expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def _parse_date(value: Any, field: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return isoparse(str(value)).date()
    except (TypeError, ValueError):
        raise ValidationError({field: "Expected an ISO-8601 date."})


@dataclass(frozen=True)
class CardWebhookEvent:
    """Normalized event forwarded by the card-payment processor."""
    event_type: str
    tenant_id: UUID
    external_reference: str
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    plan_code: str = ""

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "CardWebhookEvent":
        event_type = payload.get("type") or payload.get("event")
        if not event_type:
            raise ValidationError({"type": "This field is required."})

        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise ValidationError({"data": "Expected an object."})
        try:
            tenant_id = UUID(str(data.get("tenant_id")))
        except ValueError:
            raise ValidationError({"tenant_id": "Must be a valid UUID."})

        reference = str(data.get("subscription_id") or "").strip()
        if not reference:
            raise ValidationError({"subscription_id": "This field is required."})

        start = data.get("current_period_start")
        end = data.get("current_period_end")
        if event_type == EVENT_ACTIVE and not (start and end):
            raise ValidationError({"current_period_end": "Active events carry the current period."})

        return cls(
            event_type=event_type,
            tenant_id=tenant_id,
            external_reference=reference,
            period_start=_parse_date(start, "current_period_start") if start else None,
            period_end=_parse_date(end, "current_period_end") if end else None,
            plan_code=str(data.get("plan_code") or ""),
        )


def _months_between(start: date, end: date) -> int:
    delta = relativedelta(end, start)
    return max(1, delta.years * 12 + delta.months)


class SubscriptionService:
    """
    Entitlement windows. At most one window per tenant is current; opening a
    new one closes the previous one in the same transaction.
    """

    @staticmethod
    def _lock_tenant(tenant_id: UUID) -> Tenant:
        return Tenant.objects.select_for_update().get(id=tenant_id)

    @staticmethod
    def _close_current(tenant: Tenant, now: datetime) -> Optional[Subscription]:
        current = Subscription.objects.select_for_update().filter(tenant=tenant, is_current=True).first()
        if current is not None:
            current.is_current = False
            current.closed_at = current.closed_at or now
            current.save(update_fields=["is_current", "closed_at", "updated_at"])
        return current

    @staticmethod
    def _open_window(
        *,
        tenant: Tenant,
        rail: str,
        start: date,
        end: date,
        duration_months: int,
        plan: Optional[Plan],
        previous: Optional[Subscription],
        invoice: Optional[MandateInvoice] = None,
        external_reference: str = "",
    ) -> Subscription:
        sub = Subscription.objects.create(
            tenant=tenant,
            rail=rail,
            plan=plan,
            invoice=invoice,
            external_reference=external_reference,
            status=SubscriptionStatus.ACTIVE,
            start_date=start,
            end_date=end,
            duration_months=duration_months,
            is_current=True,
            previous=previous,
        )

        fields = ["billing_status", "updated_at"]
        tenant.billing_status = BillingStatus.ACTIVE
        if plan is not None:
            tenant.plan = plan
            fields.append("plan")
        if rail == Rail.MANDATE:
            tenant.billing_interval = BillingInterval.YEARLY
            fields.append("billing_interval")
        tenant.save(update_fields=fields)
        return sub

    @staticmethod
    def _cancel_reminders(tenant_id: UUID, reason: str, window_key: Optional[str] = None) -> None:
        from civic_core.reminders.services import cancel_pending_reminders

        cancel_pending_reminders(tenant_id=tenant_id, window_key=window_key, reason=reason)

    @staticmethod
    def _audit(sub: Subscription, event_code: str, *, actor_user_id: int | None = None, **metadata: Any) -> None:
        AuditService.log(
            event_code=event_code,
            entity_type="Subscription",
            entity_id=sub.id,
            tenant_id=sub.tenant_id,
            actor_user_id=actor_user_id,
            metadata={"rail": sub.rail, "start_date": sub.start_date, "end_date": sub.end_date, **metadata},
        )

    @staticmethod
    @transaction.atomic
    def activate_from_mandate_invoice(
        *,
        invoice: MandateInvoice,
        actor_user_id: int | None = None,
    ) -> Subscription:
        """Open the window an invoice paid for. Idempotent per invoice."""
        existing = Subscription.objects.filter(invoice=invoice).first()
        if existing is not None:
            return existing

        if invoice.status != InvoiceStatus.PAID:
            raise InvalidTransition(f"Invoice {invoice.invoice_number} is {invoice.status}; expected PAID.")
        if invoice.tenant_id is None:
            raise ValidationError({"tenant": "Invoice is not linked to a tenant."})

        tenant = SubscriptionService._lock_tenant(invoice.tenant_id)
        if tenant.is_archived:
            raise InvalidTransition("Archived tenants cannot be activated.")

        previous = SubscriptionService._close_current(tenant, timezone.now())
        sub = SubscriptionService._open_window(
            tenant=tenant,
            rail=Rail.MANDATE,
            start=invoice.period_start,
            end=invoice.period_end,
            duration_months=invoice.order.duration_months,
            plan=invoice.plan,
            previous=previous,
            invoice=invoice,
        )
        SubscriptionService._cancel_reminders(tenant.id, reason="Subscription activated")

        SubscriptionService._audit(sub, "subscription.activated", actor_user_id=actor_user_id,
                                   invoice_number=invoice.invoice_number)
        logger.info("Tenant %s activated on mandate rail until %s", tenant.slug, sub.end_date)
        return sub

    @staticmethod
    @transaction.atomic
    def activate_from_card_webhook(event: CardWebhookEvent) -> Optional[Subscription]:
        """
        Apply a card processor event. Returns the affected window, or None when
        the event is ignored. Replays are no-ops.
        """
        tenant = Tenant.objects.select_for_update().filter(id=event.tenant_id).first()
        if tenant is None:
            logger.warning("Card event %s for unknown tenant %s", event.event_type, event.tenant_id)
            return None
        if tenant.is_archived:
            logger.info("Card event %s ignored: tenant %s is archived", event.event_type, tenant.slug)
            return None

        if event.event_type == EVENT_ACTIVE:
            return SubscriptionService._card_active(tenant, event)
        if event.event_type == EVENT_CANCELLED:
            return SubscriptionService._card_cancelled(tenant, event)

        logger.info("Card event %s ignored", event.event_type)
        return None

    @staticmethod
    def _card_active(tenant: Tenant, event: CardWebhookEvent) -> Subscription:
        existing = Subscription.objects.filter(
            external_reference=event.external_reference,
            end_date=event.period_end,
        ).first()
        if existing is not None:
            return existing

        plan = Plan.objects.filter(code=event.plan_code).first() if event.plan_code else None
        try:
            with transaction.atomic():
                previous = SubscriptionService._close_current(tenant, timezone.now())
                sub = SubscriptionService._open_window(
                    tenant=tenant,
                    rail=Rail.CARD,
                    start=event.period_start,
                    end=event.period_end,
                    duration_months=_months_between(event.period_start, event.period_end),
                    plan=plan,
                    previous=previous,
                    external_reference=event.external_reference,
                )
        except IntegrityError:
            # concurrent replay of the same event won the insert
            return Subscription.objects.get(external_reference=event.external_reference, end_date=event.period_end)

        SubscriptionService._cancel_reminders(tenant.id, reason="Subscription activated")
        SubscriptionService._audit(sub, "subscription.activated", external_reference=event.external_reference)
        logger.info("Tenant %s activated on card rail until %s", tenant.slug, sub.end_date)
        return sub

    @staticmethod
    def _card_cancelled(tenant: Tenant, event: CardWebhookEvent) -> Optional[Subscription]:
        sub = Subscription.objects.select_for_update().filter(
            tenant=tenant,
            is_current=True,
            external_reference=event.external_reference,
        ).first()
        if sub is None:
            return None

        # idempotent no-op
        if sub.closed_at is not None:
            return sub

        # access runs until end_date; the window simply won't be renewed
        sub.closed_at = timezone.now()
        sub.save(update_fields=["closed_at", "updated_at"])

        tenant.billing_status = BillingStatus.CANCELLED
        tenant.save(update_fields=["billing_status", "updated_at"])

        SubscriptionService._cancel_reminders(tenant.id, window_key=sub.window_key, reason="Subscription cancelled")
        SubscriptionService._audit(sub, "subscription.cancelled", external_reference=event.external_reference)
        return sub

    @staticmethod
    @transaction.atomic
    def renew(
        *,
        subscription_id: UUID,
        duration_months: Optional[int] = None,
        actor_user_id: int | None = None,
        today: Optional[date] = None,
    ) -> Subscription:
        today = today or timezone.localdate()

        sub = Subscription.objects.select_for_update().get(id=subscription_id)
        tenant = SubscriptionService._lock_tenant(sub.tenant_id)
        if tenant.is_archived:
            raise InvalidTransition("Archived tenants cannot be renewed.")
        if not sub.is_current:
            raise InvalidTransition("Only the current subscription window can be renewed.")

        months = int(duration_months or sub.duration_months)
        if months < 1:
            raise ValidationError({"duration_months": "Must be >= 1."})

        start = max(today, sub.end_date)
        end = start + relativedelta(months=months)

        SubscriptionService._close_current(tenant, timezone.now())
        new = SubscriptionService._open_window(
            tenant=tenant,
            rail=sub.rail,
            start=start,
            end=end,
            duration_months=months,
            plan=sub.plan,
            previous=sub,
            external_reference="",
        )
        SubscriptionService._cancel_reminders(tenant.id, window_key=sub.window_key, reason="Subscription renewed")

        SubscriptionService._audit(new, "subscription.renewed", actor_user_id=actor_user_id,
                                   previous_end_date=sub.end_date)
        logger.info("Tenant %s renewed until %s", tenant.slug, end)
        return new
