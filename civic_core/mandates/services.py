# civic_core/mandates/services.py
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from dateutil.relativedelta import relativedelta
from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from civic_core.audit.services import AuditService
from civic_core.common.api.exceptions import DeliveryFailure, DocumentLocked, InvalidTransition
from civic_core.common.conf import BillingSettings, load_billing_settings
from civic_core.documents.models import DocumentType
from civic_core.documents.numbering import next_document_number
from civic_core.documents.totals import ZERO, money
from civic_core.mandates.models import (
    InvoiceStatus,
    MandateInvoice,
    MandateOrder,
    OrderStatus,
)
from civic_core.quotes.models import Quote, QuoteStatus

logger = logging.getLogger(__name__)


def _lead_id(entity) -> Optional[UUID]:
    quote = entity.quote if isinstance(entity, MandateOrder) else entity.order.quote
    return quote.lead_id


def _audit(entity, event_code: str, *, number: str, actor_user_id: int | None = None, **metadata: Any) -> None:
    AuditService.log(
        event_code=event_code,
        entity_type=type(entity).__name__,
        entity_id=entity.id,
        tenant_id=entity.tenant_id,
        lead_id=_lead_id(entity),
        actor_user_id=actor_user_id,
        metadata={"number": number, **metadata},
    )


def _pricing_snapshot(quote: Quote) -> Dict[str, Any]:
    """Freeze the quote's plan / add-on lines as they are priced right now."""
    plan = None
    plan_name = ""
    plan_amount = ZERO
    addons: List[Dict[str, Any]] = []
    addons_amount = ZERO

    for line in quote.lines.select_related("plan", "addon").order_by("position"):
        if line.plan_id:
            if plan is None:
                plan = line.plan
                plan_name = line.description or line.plan.name
            plan_amount += line.total
            continue
        addons.append(
            {
                "id": str(line.addon_id) if line.addon_id else None,
                "name": line.description,
                "quantity": line.quantity,
                "unit_price": str(line.unit_price),
                "total_price": str(line.total),
            }
        )
        addons_amount += line.total

    return {
        "plan": plan,
        "plan_name": plan_name,
        "plan_amount": money(plan_amount),
        "addons_amount": money(addons_amount),
        "addons_snapshot": addons,
        "subtotal": quote.subtotal,
        "tax_rate": quote.tax_rate if quote.vat_applicable else ZERO,
        "tax_amount": quote.tax_amount,
        "total_amount": quote.total,
        "vat_notice": quote.vat_notice,
    }


class OrderService:
    """
    Mandate order state machine:

      PENDING_VALIDATION -> PENDING_BC -> ACCEPTED -> INVOICED
      (REJECTED | CANCELLED from any non-INVOICED, non-terminal state)
    """

    @staticmethod
    def _lock(order_id: UUID) -> MandateOrder:
        return MandateOrder.objects.select_for_update().get(id=order_id)

    @staticmethod
    def _ensure_mutable(order: MandateOrder) -> None:
        if order.status == OrderStatus.INVOICED:
            raise DocumentLocked(f"Order {order.order_number} is invoiced and can no longer change.")

    @staticmethod
    @transaction.atomic
    def create_from_quote(
        *,
        quote: Quote,
        actor_user_id: int | None = None,
        conf: BillingSettings | None = None,
    ) -> MandateOrder:
        conf = conf or load_billing_settings()

        if quote.status != QuoteStatus.ACCEPTED:
            raise InvalidTransition(f"Quote {quote.quote_number} is {quote.status}; an order needs an ACCEPTED quote.")
        if not quote.is_mandate:
            raise InvalidTransition("Orders are only derived from administrative mandate quotes.")

        order = MandateOrder(
            order_number=next_document_number(DocumentType.ORDER, conf=conf),
            quote=quote,
            tenant_id=quote.tenant_id,
            status=OrderStatus.PENDING_VALIDATION,
            duration_months=conf.mandate_duration_months,
            client_name=quote.client_name,
            client_email=quote.accepted_by_email or quote.client_email,
            client_address=quote.mandate_billing_address or quote.client_address,
            client_siret=quote.mandate_siret or quote.client_siret,
            client_billing_service=quote.mandate_billing_service,
            use_chorus_pro=quote.mandate_use_chorus_pro,
            **_pricing_snapshot(quote),
        )
        try:
            with transaction.atomic():
                order.save()
        except IntegrityError:
            raise DocumentLocked(f"Quote {quote.quote_number} already has an order.")

        _audit(order, "order.created", number=order.order_number, actor_user_id=actor_user_id,
               quote_number=quote.quote_number, total_amount=order.total_amount)
        logger.info("Order %s created from quote %s", order.order_number, quote.quote_number)
        return order

    @staticmethod
    @transaction.atomic
    def attach_purchase_order(
        *,
        order_id: UUID,
        purchase_order_number: str,
        engagement_number: str = "",
        service_code: str = "",
        actor_user_id: int | None = None,
    ) -> MandateOrder:
        purchase_order_number = (purchase_order_number or "").strip()
        if not purchase_order_number:
            raise ValidationError({"purchase_order_number": "This field is required."})

        order = OrderService._lock(order_id)
        OrderService._ensure_mutable(order)
        if order.status != OrderStatus.PENDING_VALIDATION:
            raise InvalidTransition(f"Order {order.order_number} is {order.status}; expected PENDING_VALIDATION.")

        order.purchase_order_number = purchase_order_number
        order.engagement_number = engagement_number or ""
        order.service_code = service_code or ""
        order.bc_received_at = timezone.now()
        order.status = OrderStatus.PENDING_BC
        order.save(update_fields=[
            "purchase_order_number", "engagement_number", "service_code", "bc_received_at", "status", "updated_at",
        ])

        _audit(order, "order.bc_attached", number=order.order_number, actor_user_id=actor_user_id,
               purchase_order_number=purchase_order_number)
        return order

    @staticmethod
    @transaction.atomic
    def validate(*, order_id: UUID, actor_user_id: int | None = None) -> MandateOrder:
        order = OrderService._lock(order_id)

        # idempotent no-op
        if order.status == OrderStatus.ACCEPTED:
            return order
        OrderService._ensure_mutable(order)
        if order.status != OrderStatus.PENDING_BC:
            raise InvalidTransition(f"Order {order.order_number} is {order.status}; expected PENDING_BC.")

        order.status = OrderStatus.ACCEPTED
        order.validated_at = timezone.now()
        order.validated_by_user_id = actor_user_id
        order.save(update_fields=["status", "validated_at", "validated_by_user_id", "updated_at"])

        _audit(order, "order.validated", number=order.order_number, actor_user_id=actor_user_id)
        return order

    @staticmethod
    def _period_start(order: MandateOrder, today: date) -> date:
        from civic_core.subscriptions.selectors import current_subscription

        if order.tenant_id is None:
            return today
        current = current_subscription(order.tenant_id)
        if current is not None and current.end_date and current.end_date > today:
            return current.end_date
        return today

    @staticmethod
    @transaction.atomic
    def invoice(
        *,
        order_id: UUID,
        actor_user_id: int | None = None,
        today: Optional[date] = None,
        conf: BillingSettings | None = None,
    ) -> MandateInvoice:
        """ACCEPTED -> INVOICED. Calling it again on an invoiced order returns the same invoice."""
        conf = conf or load_billing_settings()
        today = today or timezone.localdate()

        order = OrderService._lock(order_id)
        if order.status == OrderStatus.INVOICED:
            return MandateInvoice.objects.get(order=order)
        if order.status != OrderStatus.ACCEPTED:
            raise InvalidTransition(f"Order {order.order_number} is {order.status}; only ACCEPTED orders can be invoiced.")

        period_start = OrderService._period_start(order, today)
        invoice = MandateInvoice(
            invoice_number=next_document_number(DocumentType.INVOICE, today=today, conf=conf),
            order=order,
            tenant_id=order.tenant_id,
            status=InvoiceStatus.DRAFT,
            period_start=period_start,
            period_end=period_start + relativedelta(months=order.duration_months),
            emitter_snapshot=dict(conf.emitter),
            payment_terms=conf.payment_terms_label,
            due_date=today + timedelta(days=conf.payment_terms_days),
            client_name=order.client_name,
            client_email=order.client_email,
            client_address=order.client_address,
            client_siret=order.client_siret,
            plan=order.plan,
            plan_name=order.plan_name,
            plan_amount=order.plan_amount,
            addons_amount=order.addons_amount,
            addons_snapshot=list(order.addons_snapshot),
            subtotal=order.subtotal,
            tax_rate=order.tax_rate,
            tax_amount=order.tax_amount,
            total_amount=order.total_amount,
            vat_notice=order.vat_notice,
        )
        try:
            with transaction.atomic():
                invoice.save()
        except IntegrityError:
            raise DocumentLocked(f"Order {order.order_number} is already being invoiced.")

        order.status = OrderStatus.INVOICED
        order.invoiced_at = timezone.now()
        order.save(update_fields=["status", "invoiced_at", "updated_at"])

        _audit(order, "order.invoiced", number=order.order_number, actor_user_id=actor_user_id,
               invoice_number=invoice.invoice_number)
        _audit(invoice, "invoice.created", number=invoice.invoice_number, actor_user_id=actor_user_id,
               period_start=invoice.period_start, period_end=invoice.period_end)
        logger.info("Order %s invoiced as %s", order.order_number, invoice.invoice_number)
        return invoice

    @staticmethod
    def _ensure_open(order: MandateOrder) -> None:
        OrderService._ensure_mutable(order)
        if order.status in (OrderStatus.REJECTED, OrderStatus.CANCELLED):
            raise InvalidTransition(f"Order {order.order_number} is already {order.status}.")

    @staticmethod
    @transaction.atomic
    def reject(*, order_id: UUID, reason: str = "", actor_user_id: int | None = None) -> MandateOrder:
        order = OrderService._lock(order_id)
        OrderService._ensure_open(order)

        order.status = OrderStatus.REJECTED
        order.rejected_at = timezone.now()
        order.rejection_reason = reason or ""
        order.save(update_fields=["status", "rejected_at", "rejection_reason", "updated_at"])

        _audit(order, "order.rejected", number=order.order_number, actor_user_id=actor_user_id, reason=reason)
        return order

    @staticmethod
    @transaction.atomic
    def cancel(*, order_id: UUID, reason: str = "", actor_user_id: int | None = None) -> MandateOrder:
        order = OrderService._lock(order_id)
        OrderService._ensure_open(order)

        order.status = OrderStatus.CANCELLED
        order.cancelled_at = timezone.now()
        order.cancellation_reason = reason or ""
        order.save(update_fields=["status", "cancelled_at", "cancellation_reason", "updated_at"])

        _audit(order, "order.cancelled", number=order.order_number, actor_user_id=actor_user_id, reason=reason)
        return order


class InvoiceService:
    """
    Mandate invoice state machine:

      DRAFT -> SENT -> PAID, CANCELLED from DRAFT / SENT.

    OVERDUE is never stored, see MandateInvoice.display_status.
    """

    @staticmethod
    def _lock(invoice_id: UUID) -> MandateInvoice:
        return MandateInvoice.objects.select_for_update().get(id=invoice_id)

    @staticmethod
    @transaction.atomic
    def send(*, invoice_id: UUID, actor_user_id: int | None = None) -> MandateInvoice:
        invoice = InvoiceService._lock(invoice_id)

        # idempotent no-op
        if invoice.status == InvoiceStatus.SENT:
            return invoice
        if invoice.status != InvoiceStatus.DRAFT:
            raise InvalidTransition(f"Invoice {invoice.invoice_number} is {invoice.status}; only DRAFT invoices can be sent.")

        invoice.status = InvoiceStatus.SENT
        invoice.sent_at = timezone.now()
        invoice.save(update_fields=["status", "sent_at", "updated_at"])

        _audit(invoice, "invoice.sent", number=invoice.invoice_number, actor_user_id=actor_user_id,
               due_date=invoice.due_date)
        return invoice

    @staticmethod
    @transaction.atomic
    def record_mandate(
        *,
        invoice_id: UUID,
        actor_user_id: int | None = None,
        at: Optional[datetime] = None,
    ) -> MandateInvoice:
        """The client confirmed the payment mandate. The invoice stays SENT."""
        invoice = InvoiceService._lock(invoice_id)
        if invoice.status != InvoiceStatus.SENT:
            raise InvalidTransition(f"Invoice {invoice.invoice_number} is {invoice.status}; expected SENT.")
        if invoice.mandated_at is not None:
            return invoice

        invoice.mandated_at = at or timezone.now()
        invoice.save(update_fields=["mandated_at", "updated_at"])

        _audit(invoice, "invoice.mandated", number=invoice.invoice_number, actor_user_id=actor_user_id)
        return invoice

    @staticmethod
    @transaction.atomic
    def mark_paid(
        *,
        invoice_id: UUID,
        payment_reference: str = "",
        actor_user_id: int | None = None,
        paid_at: Optional[datetime] = None,
    ) -> MandateInvoice:
        from civic_core.subscriptions.services import SubscriptionService
        from civic_core.tenants.services import TenantService

        invoice = InvoiceService._lock(invoice_id)

        # idempotent no-op
        if invoice.status == InvoiceStatus.PAID:
            return invoice
        if invoice.status != InvoiceStatus.SENT:
            raise InvalidTransition(f"Invoice {invoice.invoice_number} is {invoice.status}; only SENT invoices can be paid.")

        invoice.status = InvoiceStatus.PAID
        invoice.paid_at = paid_at or timezone.now()
        invoice.payment_reference = payment_reference or ""
        invoice.save(update_fields=["status", "paid_at", "payment_reference", "updated_at"])

        _audit(invoice, "invoice.paid", number=invoice.invoice_number, actor_user_id=actor_user_id,
               payment_reference=payment_reference, total_amount=invoice.total_amount)

        # A prospect paying its first invoice becomes a tenant.
        if invoice.tenant_id is None:
            lead_id = invoice.order.quote.lead_id
            if lead_id is None:
                raise ValidationError({"tenant": "Invoice is not linked to a tenant or a lead."})
            TenantService.create_from_lead(lead_id=lead_id, trial_days=None, actor_user_id=actor_user_id)
            invoice.refresh_from_db()

        SubscriptionService.activate_from_mandate_invoice(invoice=invoice, actor_user_id=actor_user_id)
        logger.info("Invoice %s paid (%s)", invoice.invoice_number, payment_reference or "no reference")
        return invoice

    @staticmethod
    @transaction.atomic
    def cancel(*, invoice_id: UUID, reason: str = "", actor_user_id: int | None = None) -> MandateInvoice:
        invoice = InvoiceService._lock(invoice_id)

        # idempotent no-op
        if invoice.status == InvoiceStatus.CANCELLED:
            return invoice
        if invoice.status not in (InvoiceStatus.DRAFT, InvoiceStatus.SENT):
            raise InvalidTransition(f"Invoice {invoice.invoice_number} is {invoice.status} and cannot be cancelled.")

        invoice.status = InvoiceStatus.CANCELLED
        invoice.cancelled_at = timezone.now()
        invoice.save(update_fields=["status", "cancelled_at", "updated_at"])

        _audit(invoice, "invoice.cancelled", number=invoice.invoice_number, actor_user_id=actor_user_id, reason=reason)
        return invoice

    @staticmethod
    def email_to_client(
        *,
        invoice_id: UUID,
        to: str = "",
        message: Optional[str] = None,
        actor_user_id: int | None = None,
        sender=None,
        renderer=None,
        conf: BillingSettings | None = None,
    ) -> MandateInvoice:
        """Email the invoice PDF; a DRAFT invoice is marked SENT once delivered."""
        from civic_core.documents.pdf import get_pdf_renderer, pdf_filename
        from civic_core.notifications.email import Attachment, get_email_sender, send_invoice_email

        conf = conf or load_billing_settings()
        invoice = MandateInvoice.objects.select_related("order", "tenant").get(id=invoice_id)
        if invoice.status not in (InvoiceStatus.DRAFT, InvoiceStatus.SENT):
            raise InvalidTransition(f"Invoice {invoice.invoice_number} is {invoice.status}.")

        recipient = to or invoice.client_email or (invoice.tenant.contact_email if invoice.tenant else "")
        if not recipient:
            raise ValidationError({"to": "No recipient email for this invoice."})

        renderer = renderer or get_pdf_renderer(conf)
        sender = sender or get_email_sender(conf)

        pdf = renderer.render_mandate_invoice(invoice)
        ok = send_invoice_email(
            sender,
            to=recipient,
            invoice=invoice,
            attachments=[Attachment(pdf_filename(invoice.invoice_number), pdf)],
            message=message,
        )
        if not ok:
            raise DeliveryFailure(f"Invoice {invoice.invoice_number} could not be emailed to {recipient}.")

        _audit(invoice, "invoice.emailed", number=invoice.invoice_number, actor_user_id=actor_user_id, to=recipient)
        if invoice.status == InvoiceStatus.DRAFT:
            invoice = InvoiceService.send(invoice_id=invoice.id, actor_user_id=actor_user_id)
        return invoice
