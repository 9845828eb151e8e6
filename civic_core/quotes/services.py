# civic_core/quotes/services.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from django.conf import settings
from django.db import transaction
from django.db.models import Max
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from civic_core.audit.services import AuditService
from civic_core.catalog.models import Addon, BillingInterval, Plan
from civic_core.catalog.selectors import price_for
from civic_core.common.api.exceptions import DeliveryFailure, DocumentLocked, InvalidTransition
from civic_core.common.conf import BillingSettings, load_billing_settings
from civic_core.common.siret import validate_siret_format
from civic_core.documents.models import DocumentType
from civic_core.documents.numbering import next_document_number
from civic_core.documents.totals import compute_totals, line_total, money
from civic_core.leads.models import Lead, PipelineStage
from civic_core.leads.services import LeadService, new_public_token
from civic_core.quotes.models import (
    MandateStatus,
    PaymentMethod,
    Quote,
    QuoteLineItem,
    QuoteSource,
    QuoteStatus,
)
from civic_core.tenants.models import Tenant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MandateDetails:
    """Public-sector billing details supplied when a mandate quote is accepted."""
    siret: str = ""
    billing_address: str = ""
    billing_service: str = ""
    use_chorus_pro: bool = False


def _audit(quote: Quote, event_code: str, *, actor_user_id: int | None = None, **metadata: Any) -> None:
    AuditService.log(
        event_code=event_code,
        entity_type="Quote",
        entity_id=quote.id,
        tenant_id=quote.tenant_id,
        lead_id=quote.lead_id,
        actor_user_id=actor_user_id,
        metadata={"quote_number": quote.quote_number, **metadata},
    )


class QuoteService:
    """
    Quote state machine:

      DRAFT -> SENT -> ACCEPTED | REJECTED | EXPIRED

    Line items and totals change only while DRAFT. Expiry is applied lazily
    (on read and before any transition), there is no background job for it.
    """

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_editable(quote: Quote) -> None:
        if not quote.is_editable:
            raise DocumentLocked(f"Quote {quote.quote_number} is {quote.status}; only DRAFT quotes can be edited.")

    @staticmethod
    def _recalc_totals(quote: Quote, conf: BillingSettings) -> None:
        lines = QuoteLineItem.objects.filter(quote=quote)
        totals = compute_totals(
            (l.total for l in lines),
            quote.tax_rate,
            vat_applicable=quote.vat_applicable,
            exemption_notice=conf.vat_exemption_notice,
        )
        quote.subtotal = totals.subtotal
        quote.tax_amount = totals.tax_amount
        quote.total = totals.total
        quote.vat_notice = totals.vat_notice
        quote.save(update_fields=["subtotal", "tax_amount", "total", "vat_notice", "updated_at"])

    @staticmethod
    def _interval_for(quote: Quote, requested: Optional[str]) -> str:
        # Mandate rail bills yearly only; card / undecided defaults to monthly.
        if quote.is_mandate:
            return BillingInterval.YEARLY
        if requested and requested not in BillingInterval.values:
            raise ValidationError({"billing_interval": f"Invalid interval. Allowed: {list(BillingInterval.values)}"})
        return requested or BillingInterval.MONTHLY

    @staticmethod
    def _build_line(
        quote: Quote,
        *,
        position: int,
        description: str = "",
        quantity: int = 1,
        unit_price: Optional[Decimal] = None,
        plan_id: Optional[UUID] = None,
        addon_id: Optional[UUID] = None,
        billing_interval: Optional[str] = None,
    ) -> QuoteLineItem:
        if plan_id and addon_id:
            raise ValidationError({"line": "A line references either a plan or an add-on, not both."})

        plan = Plan.objects.get(id=plan_id) if plan_id else None
        addon = Addon.objects.get(id=addon_id) if addon_id else None
        item = plan or addon

        interval = None
        if item is not None:
            interval = QuoteService._interval_for(quote, billing_interval)
            if unit_price is None:
                unit_price = price_for(item, interval)
            description = description or item.name
        elif unit_price is None:
            raise ValidationError({"unit_price": "Free-text lines need a unit price."})

        description = (description or "").strip()
        if not description:
            raise ValidationError({"description": "This field is required."})

        price = money(unit_price)
        return QuoteLineItem(
            quote=quote,
            position=position,
            description=description,
            quantity=int(quantity),
            unit_price=price,
            total=line_total(quantity, price),
            plan=plan,
            addon=addon,
            billing_interval=interval,
        )

    @staticmethod
    def _next_position(quote: Quote) -> int:
        current = QuoteLineItem.objects.filter(quote=quote).aggregate(m=Max("position"))["m"]
        return 0 if current is None else current + 1

    @staticmethod
    def _validate_payment_method(payment_method: Optional[str]) -> None:
        if payment_method is not None and payment_method not in PaymentMethod.values:
            raise ValidationError({"payment_method": f"Invalid payment method. Allowed: {list(PaymentMethod.values)}"})

    @staticmethod
    def _apply_payment_method(quote: Quote, payment_method: Optional[str]) -> None:
        quote.payment_method = payment_method
        quote.administrative_mandate_status = (
            MandateStatus.PENDING if payment_method == PaymentMethod.ADMINISTRATIVE_MANDATE else None
        )
        quote.mandate_decided_at = None

    @staticmethod
    def _reprice_yearly(quote: Quote) -> int:
        changed = 0
        for line in QuoteLineItem.objects.filter(quote=quote).select_related("plan", "addon"):
            item = line.catalog_item
            if item is None:
                continue
            line.billing_interval = BillingInterval.YEARLY
            line.unit_price = money(price_for(item, BillingInterval.YEARLY))
            line.total = line_total(line.quantity, line.unit_price)
            line.save(update_fields=["billing_interval", "unit_price", "total", "updated_at"])
            changed += 1
        return changed

    @staticmethod
    def _expire_locked(quote: Quote, now: datetime) -> bool:
        if quote.status != QuoteStatus.SENT or not quote.is_past_validity(now):
            return False
        quote.status = QuoteStatus.EXPIRED
        quote.expired_at = now
        quote.save(update_fields=["status", "expired_at", "updated_at"])
        _audit(quote, "quote.expired", valid_until=quote.valid_until)
        logger.info("Quote %s expired (valid until %s)", quote.quote_number, quote.valid_until)
        return True

    # ------------------------------------------------------------------
    # creation & draft edition
    # ------------------------------------------------------------------

    @staticmethod
    @transaction.atomic
    def create(
        *,
        client_name: str = "",
        client_email: str = "",
        client_address: str = "",
        client_siret: str = "",
        lead_id: Optional[UUID] = None,
        tenant_id: Optional[UUID] = None,
        source: str = QuoteSource.MANUAL,
        payment_method: Optional[str] = None,
        tax_rate: Optional[Decimal] = None,
        valid_until: Optional[datetime] = None,
        notes: str = "",
        lines: Optional[Iterable[Dict[str, Any]]] = None,
        actor_user_id: int | None = None,
        conf: BillingSettings | None = None,
    ) -> Quote:
        conf = conf or load_billing_settings()
        QuoteService._validate_payment_method(payment_method)
        if source not in QuoteSource.values:
            raise ValidationError({"source": f"Invalid source. Allowed: {list(QuoteSource.values)}"})

        lead = Lead.objects.get(id=lead_id) if lead_id else None
        tenant = Tenant.objects.get(id=tenant_id) if tenant_id else None
        if tenant is None and lead is not None and lead.converted_tenant_id:
            tenant = lead.converted_tenant

        if lead is not None:
            client_name = client_name or lead.organisation_name
            client_email = client_email or lead.email
        if tenant is not None:
            client_name = client_name or tenant.name
            client_email = client_email or tenant.contact_email
            client_address = client_address or tenant.address
            client_siret = client_siret or tenant.siret

        client_name = (client_name or "").strip()
        if not client_name:
            raise ValidationError({"client_name": "This field is required (or provide a lead / tenant)."})

        rate = conf.default_tax_rate if tax_rate is None else money(tax_rate)
        if rate < 0:
            raise ValidationError({"tax_rate": "Tax rate must be >= 0."})

        quote = Quote(
            quote_number=next_document_number(DocumentType.QUOTE, conf=conf),
            status=QuoteStatus.DRAFT,
            source=source,
            lead=lead,
            tenant=tenant,
            client_name=client_name,
            client_email=client_email or "",
            client_address=client_address or "",
            client_siret=client_siret or "",
            tax_rate=rate,
            vat_applicable=conf.vat_applicable,
            valid_until=valid_until or timezone.now() + timedelta(days=conf.quote_validity_days),
            notes=notes or "",
            created_by_user_id=actor_user_id,
        )
        QuoteService._apply_payment_method(quote, payment_method)
        quote.save()

        new_lines: List[QuoteLineItem] = []
        for position, data in enumerate(lines or ()):
            new_lines.append(QuoteService._build_line(quote, position=position, **data))
        if new_lines:
            QuoteLineItem.objects.bulk_create(new_lines)

        QuoteService._recalc_totals(quote, conf)
        _audit(quote, "quote.created", actor_user_id=actor_user_id, total=quote.total)

        if lead is not None:
            LeadService.advance_for_event(
                lead_id=lead.id, stage=PipelineStage.QUOTED, event="quote.created", actor_user_id=actor_user_id
            )
        return quote

    @staticmethod
    @transaction.atomic
    def add_line_item(
        *,
        quote_id: UUID,
        description: str = "",
        quantity: int = 1,
        unit_price: Optional[Decimal] = None,
        plan_id: Optional[UUID] = None,
        addon_id: Optional[UUID] = None,
        billing_interval: Optional[str] = None,
        conf: BillingSettings | None = None,
    ) -> QuoteLineItem:
        conf = conf or load_billing_settings()
        quote = Quote.objects.select_for_update().get(id=quote_id)
        QuoteService._ensure_editable(quote)

        line = QuoteService._build_line(
            quote,
            position=QuoteService._next_position(quote),
            description=description,
            quantity=quantity,
            unit_price=unit_price,
            plan_id=plan_id,
            addon_id=addon_id,
            billing_interval=billing_interval,
        )
        line.save()

        QuoteService._recalc_totals(quote, conf)
        return line

    @staticmethod
    @transaction.atomic
    def remove_line_item(*, quote_id: UUID, line_id: UUID, conf: BillingSettings | None = None) -> Quote:
        conf = conf or load_billing_settings()
        quote = Quote.objects.select_for_update().get(id=quote_id)
        QuoteService._ensure_editable(quote)

        QuoteLineItem.objects.get(id=line_id, quote=quote).delete()

        QuoteService._recalc_totals(quote, conf)
        return quote

    @staticmethod
    @transaction.atomic
    def set_payment_method(
        *,
        quote_id: UUID,
        payment_method: Optional[str],
        actor_user_id: int | None = None,
        conf: BillingSettings | None = None,
    ) -> Quote:
        conf = conf or load_billing_settings()
        QuoteService._validate_payment_method(payment_method)

        quote = Quote.objects.select_for_update().get(id=quote_id)
        QuoteService._ensure_editable(quote)

        # idempotent no-op
        if quote.payment_method == payment_method:
            return quote

        previous = quote.payment_method
        QuoteService._apply_payment_method(quote, payment_method)
        quote.save(update_fields=["payment_method", "administrative_mandate_status", "mandate_decided_at", "updated_at"])

        if quote.is_mandate:
            QuoteService._reprice_yearly(quote)
        QuoteService._recalc_totals(quote, conf)

        _audit(quote, "quote.payment_method_changed", actor_user_id=actor_user_id, previous=previous, current=payment_method)
        return quote

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    @transaction.atomic
    def send(*, quote_id: UUID, actor_user_id: int | None = None, conf: BillingSettings | None = None) -> Quote:
        conf = conf or load_billing_settings()
        quote = Quote.objects.select_for_update().get(id=quote_id)

        # idempotent no-op
        if quote.status == QuoteStatus.SENT:
            return quote
        if quote.status != QuoteStatus.DRAFT:
            raise InvalidTransition(f"Quote {quote.quote_number} is {quote.status}; only DRAFT quotes can be sent.")

        if not QuoteLineItem.objects.filter(quote=quote).exists():
            raise ValidationError({"quote": "Cannot send a quote without line items."})

        now = timezone.now()
        if quote.is_past_validity(now):
            quote.valid_until = now + timedelta(days=conf.quote_validity_days)

        quote.status = QuoteStatus.SENT
        quote.sent_at = now
        if not quote.public_token:
            quote.public_token = new_public_token()
        quote.save(update_fields=["status", "sent_at", "valid_until", "public_token", "updated_at"])

        _audit(quote, "quote.sent", actor_user_id=actor_user_id, valid_until=quote.valid_until)

        if quote.lead_id:
            LeadService.advance_for_event(
                lead_id=quote.lead_id,
                stage=PipelineStage.AWAITING_DECISION,
                event="quote.sent",
                actor_user_id=actor_user_id,
            )
        return quote

    @staticmethod
    @transaction.atomic
    def expire_if_due(*, quote_id: UUID, now: Optional[datetime] = None) -> Quote:
        """SENT -> EXPIRED when valid_until has passed; otherwise unchanged."""
        quote = Quote.objects.select_for_update().get(id=quote_id)
        QuoteService._expire_locked(quote, now or timezone.now())
        return quote

    @staticmethod
    def expire(*, quote_id: UUID, now: Optional[datetime] = None) -> Quote:
        return QuoteService.expire_if_due(quote_id=quote_id, now=now)

    @staticmethod
    @transaction.atomic
    def expire_overdue(*, now: Optional[datetime] = None) -> int:
        """Bulk form of the lazy expiry, used before listing quotes."""
        now = now or timezone.now()
        count = 0
        due = Quote.objects.select_for_update().filter(status=QuoteStatus.SENT, valid_until__lt=now)
        for quote in due:
            if QuoteService._expire_locked(quote, now):
                count += 1
        return count

    @staticmethod
    def accept(
        *,
        quote_id: UUID,
        accepted_by_name: str = "",
        accepted_by_email: str = "",
        payment_method: Optional[str] = None,
        mandate_details: Optional[MandateDetails] = None,
        actor_user_id: int | None = None,
        now: Optional[datetime] = None,
        conf: BillingSettings | None = None,
    ) -> Quote:
        """
        SENT -> ACCEPTED. On the mandate rail the order is created in the same
        transaction. The expiry check commits on its own so a late acceptance
        still leaves the quote EXPIRED.
        """
        now = now or timezone.now()
        quote = QuoteService.expire_if_due(quote_id=quote_id, now=now)
        if quote.status == QuoteStatus.EXPIRED:
            raise InvalidTransition(f"Quote {quote.quote_number} expired on {quote.valid_until:%Y-%m-%d}.")

        return QuoteService._accept(
            quote_id=quote_id,
            accepted_by_name=accepted_by_name,
            accepted_by_email=accepted_by_email,
            payment_method=payment_method,
            mandate_details=mandate_details,
            actor_user_id=actor_user_id,
            now=now,
            conf=conf or load_billing_settings(),
        )

    @staticmethod
    @transaction.atomic
    def _accept(
        *,
        quote_id: UUID,
        accepted_by_name: str,
        accepted_by_email: str,
        payment_method: Optional[str],
        mandate_details: Optional[MandateDetails],
        actor_user_id: int | None,
        now: datetime,
        conf: BillingSettings,
    ) -> Quote:
        from civic_core.mandates.services import OrderService

        QuoteService._validate_payment_method(payment_method)
        quote = Quote.objects.select_for_update().get(id=quote_id)

        if quote.status != QuoteStatus.SENT:
            raise InvalidTransition(f"Quote {quote.quote_number} is {quote.status}; only SENT quotes can be accepted.")

        fields = ["status", "accepted_at", "accepted_by_name", "accepted_by_email", "updated_at"]

        if payment_method and payment_method != quote.payment_method:
            if quote.payment_method is not None:
                raise ValidationError({"payment_method": f"Quote is already set to {quote.payment_method}."})
            if payment_method == PaymentMethod.ADMINISTRATIVE_MANDATE:
                monthly = QuoteLineItem.objects.filter(quote=quote, billing_interval=BillingInterval.MONTHLY)
                if monthly.exists():
                    raise InvalidTransition("Administrative mandate requires yearly pricing on every catalog line.")
            QuoteService._apply_payment_method(quote, payment_method)
            fields += ["payment_method", "administrative_mandate_status", "mandate_decided_at"]

        if quote.payment_method is None:
            raise ValidationError({"payment_method": "Choose a payment method to accept this quote."})

        if quote.is_mandate and mandate_details is not None:
            if mandate_details.siret:
                siret = validate_siret_format(mandate_details.siret)
                if not siret.is_valid:
                    raise ValidationError({"siret": siret.error})
                quote.mandate_siret = siret.siret
            quote.mandate_billing_address = mandate_details.billing_address or ""
            quote.mandate_billing_service = mandate_details.billing_service or ""
            quote.mandate_use_chorus_pro = bool(mandate_details.use_chorus_pro)
            fields += ["mandate_siret", "mandate_billing_address", "mandate_billing_service", "mandate_use_chorus_pro"]

        quote.status = QuoteStatus.ACCEPTED
        quote.accepted_at = now
        quote.accepted_by_name = accepted_by_name or ""
        quote.accepted_by_email = accepted_by_email or ""
        quote.save(update_fields=fields)

        _audit(
            quote,
            "quote.accepted",
            actor_user_id=actor_user_id,
            payment_method=quote.payment_method,
            accepted_by=accepted_by_email or accepted_by_name,
        )

        if quote.is_mandate:
            OrderService.create_from_quote(quote=quote, actor_user_id=actor_user_id, conf=conf)

        if quote.lead_id:
            LeadService.advance_for_event(
                lead_id=quote.lead_id,
                stage=PipelineStage.AWAITING_PAYMENT,
                event="quote.accepted",
                actor_user_id=actor_user_id,
            )

        logger.info("Quote %s accepted (%s)", quote.quote_number, quote.payment_method)
        return quote

    @staticmethod
    def reject(
        *,
        quote_id: UUID,
        reason: str = "",
        actor_user_id: int | None = None,
        now: Optional[datetime] = None,
    ) -> Quote:
        now = now or timezone.now()
        quote = QuoteService.expire_if_due(quote_id=quote_id, now=now)
        if quote.status == QuoteStatus.EXPIRED:
            raise InvalidTransition(f"Quote {quote.quote_number} has expired.")
        return QuoteService._reject(quote_id=quote_id, reason=reason, actor_user_id=actor_user_id, now=now)

    @staticmethod
    @transaction.atomic
    def _reject(*, quote_id: UUID, reason: str, actor_user_id: int | None, now: datetime) -> Quote:
        quote = Quote.objects.select_for_update().get(id=quote_id)
        if quote.status != QuoteStatus.SENT:
            raise InvalidTransition(f"Quote {quote.quote_number} is {quote.status}; only SENT quotes can be rejected.")

        quote.status = QuoteStatus.REJECTED
        quote.rejected_at = now
        quote.rejection_reason = reason or ""
        quote.save(update_fields=["status", "rejected_at", "rejection_reason", "updated_at"])

        _audit(quote, "quote.rejected", actor_user_id=actor_user_id, reason=reason)
        return quote

    # ------------------------------------------------------------------
    # administrative mandate decision
    # ------------------------------------------------------------------

    @staticmethod
    def _lock_pending_mandate(quote_id: UUID) -> Quote:
        quote = Quote.objects.select_for_update().get(id=quote_id)
        if not quote.is_mandate:
            raise InvalidTransition("Quote is not paid by administrative mandate.")
        if quote.status not in (QuoteStatus.SENT, QuoteStatus.ACCEPTED):
            raise InvalidTransition(f"Quote {quote.quote_number} is {quote.status}.")
        return quote

    @staticmethod
    @transaction.atomic
    def approve_mandate(*, quote_id: UUID, actor_user_id: int | None = None) -> Quote:
        quote = QuoteService._lock_pending_mandate(quote_id)

        # idempotent no-op
        if quote.administrative_mandate_status == MandateStatus.APPROVED:
            return quote
        if quote.administrative_mandate_status != MandateStatus.PENDING:
            raise InvalidTransition(f"Mandate is {quote.administrative_mandate_status}.")

        quote.administrative_mandate_status = MandateStatus.APPROVED
        quote.mandate_decided_at = timezone.now()
        quote.save(update_fields=["administrative_mandate_status", "mandate_decided_at", "updated_at"])

        _audit(quote, "quote.mandate_approved", actor_user_id=actor_user_id)
        return quote

    @staticmethod
    @transaction.atomic
    def reject_mandate(*, quote_id: UUID, reason: str = "", actor_user_id: int | None = None) -> Quote:
        from civic_core.mandates.models import CLOSED_ORDER_STATUSES, MandateOrder, OrderStatus
        from civic_core.mandates.services import OrderService

        quote = QuoteService._lock_pending_mandate(quote_id)

        # idempotent no-op
        if quote.administrative_mandate_status == MandateStatus.REJECTED:
            return quote
        if quote.administrative_mandate_status != MandateStatus.PENDING:
            raise InvalidTransition(f"Mandate is {quote.administrative_mandate_status}.")

        order = MandateOrder.objects.select_for_update().filter(quote=quote).first()
        if order is not None and order.status == OrderStatus.INVOICED:
            raise DocumentLocked(f"Order {order.order_number} is already invoiced.")

        quote.administrative_mandate_status = MandateStatus.REJECTED
        quote.mandate_decided_at = timezone.now()
        quote.save(update_fields=["administrative_mandate_status", "mandate_decided_at", "updated_at"])

        _audit(quote, "quote.mandate_rejected", actor_user_id=actor_user_id, reason=reason)

        if order is not None and order.status not in CLOSED_ORDER_STATUSES:
            OrderService.cancel(order_id=order.id, reason=reason or "Mandate rejected", actor_user_id=actor_user_id)
        return quote

    # ------------------------------------------------------------------
    # client access
    # ------------------------------------------------------------------

    @staticmethod
    @transaction.atomic
    def generate_public_token(*, quote_id: UUID) -> Quote:
        quote = Quote.objects.select_for_update().get(id=quote_id)
        if not quote.public_token:
            quote.public_token = new_public_token()
            quote.save(update_fields=["public_token", "updated_at"])
        return quote

    @staticmethod
    def public_url(quote: Quote) -> str:
        if not quote.public_token:
            return ""
        return f"{getattr(settings, 'SITE_URL', '').rstrip('/')}/devis/{quote.public_token}"

    @staticmethod
    def email_to_client(
        *,
        quote_id: UUID,
        to: str = "",
        actor_user_id: int | None = None,
        sender=None,
        renderer=None,
        conf: BillingSettings | None = None,
    ) -> Quote:
        from civic_core.documents.pdf import get_pdf_renderer, pdf_filename
        from civic_core.notifications.email import Attachment, get_email_sender, send_quote_email

        conf = conf or load_billing_settings()
        quote = QuoteService.generate_public_token(quote_id=quote_id)
        if quote.status == QuoteStatus.DRAFT:
            raise InvalidTransition("Send the quote before emailing it.")

        recipient = to or quote.client_email
        if not recipient:
            raise ValidationError({"to": "No recipient email on this quote."})

        renderer = renderer or get_pdf_renderer(conf)
        sender = sender or get_email_sender(conf)

        pdf = renderer.render_quote(quote)
        ok = send_quote_email(
            sender,
            to=recipient,
            quote=quote,
            public_url=QuoteService.public_url(quote),
            attachments=[Attachment(pdf_filename(quote.quote_number), pdf)],
        )
        if not ok:
            raise DeliveryFailure(f"Quote {quote.quote_number} could not be emailed to {recipient}.")

        _audit(quote, "quote.emailed", actor_user_id=actor_user_id, to=recipient)
        return quote
