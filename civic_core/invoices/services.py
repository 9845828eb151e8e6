# civic_core/invoices/services.py
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from civic_core.audit.services import AuditService
from civic_core.common.api.exceptions import DeliveryFailure, DocumentLocked, InvalidTransition
from civic_core.common.conf import BillingSettings, load_billing_settings
from civic_core.documents.models import DocumentType
from civic_core.documents.numbering import next_document_number
from civic_core.documents.totals import compute_totals, money
from civic_core.invoices.models import Invoice, InvoiceLineItem, Payment, PaymentChannel, PaymentStatus
from civic_core.mandates.models import InvoiceStatus
from civic_core.quotes.models import PaymentMethod, Quote, QuoteStatus

logger = logging.getLogger(__name__)


def _audit(invoice: Invoice, event_code: str, *, actor_user_id: int | None = None, **metadata: Any) -> None:
    AuditService.log(
        event_code=event_code,
        entity_type="Invoice",
        entity_id=invoice.id,
        tenant_id=invoice.tenant_id,
        lead_id=invoice.quote.lead_id,
        actor_user_id=actor_user_id,
        metadata={"number": invoice.invoice_number, **metadata},
    )


class InvoiceService:
    """
    Line-item invoice for the card rail:

      DRAFT -> SENT -> PAID, CANCELLED from DRAFT / SENT.

    PAID is reached by recording completed payments covering the total.
    """

    @staticmethod
    def _lock(invoice_id: UUID) -> Invoice:
        return Invoice.objects.select_for_update().select_related("quote").get(id=invoice_id)

    @staticmethod
    @transaction.atomic
    def create_from_quote(
        *,
        quote_id: UUID,
        actor_user_id: int | None = None,
        today: Optional[date] = None,
        conf: BillingSettings | None = None,
    ) -> Invoice:
        """Derive the invoice of an accepted card quote. Calling it again returns the same invoice."""
        conf = conf or load_billing_settings()
        today = today or timezone.localdate()

        quote = Quote.objects.select_for_update().get(id=quote_id)
        existing = Invoice.objects.filter(quote=quote).first()
        if existing is not None:
            return existing

        if quote.status != QuoteStatus.ACCEPTED:
            raise InvalidTransition(f"Quote {quote.quote_number} is {quote.status}; an invoice needs an ACCEPTED quote.")
        if quote.payment_method != PaymentMethod.CARD:
            raise InvalidTransition("Mandate quotes are invoiced through their order.")

        quote_lines = list(quote.lines.order_by("position", "created_at"))
        totals = compute_totals(
            (line.total for line in quote_lines),
            quote.tax_rate,
            vat_applicable=quote.vat_applicable,
            exemption_notice=conf.vat_exemption_notice,
        )

        invoice = Invoice(
            invoice_number=next_document_number(DocumentType.INVOICE, today=today, conf=conf),
            quote=quote,
            tenant_id=quote.tenant_id,
            status=InvoiceStatus.DRAFT,
            client_name=quote.client_name,
            client_email=quote.accepted_by_email or quote.client_email,
            client_address=quote.client_address,
            client_siret=quote.client_siret,
            subtotal=totals.subtotal,
            tax_rate=totals.tax_rate,
            tax_amount=totals.tax_amount,
            total_amount=totals.total,
            vat_notice=totals.vat_notice,
            emitter_snapshot=dict(conf.emitter),
            payment_terms=conf.payment_terms_label,
            due_date=today + timedelta(days=conf.payment_terms_days),
            notes=quote.notes,
        )
        try:
            with transaction.atomic():
                invoice.save()
        except IntegrityError:
            raise DocumentLocked(f"Quote {quote.quote_number} is already being invoiced.")

        InvoiceLineItem.objects.bulk_create(
            [
                InvoiceLineItem(
                    invoice=invoice,
                    position=position,
                    description=line.description,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    total=line.total,
                    plan_id=line.plan_id,
                    addon_id=line.addon_id,
                    billing_interval=line.billing_interval,
                )
                for position, line in enumerate(quote_lines)
            ]
        )

        _audit(invoice, "invoice.created", actor_user_id=actor_user_id,
               quote_number=quote.quote_number, total_amount=invoice.total_amount)
        logger.info("Invoice %s created from quote %s", invoice.invoice_number, quote.quote_number)
        return invoice

    @staticmethod
    @transaction.atomic
    def send(*, invoice_id: UUID, actor_user_id: int | None = None) -> Invoice:
        invoice = InvoiceService._lock(invoice_id)

        # idempotent no-op
        if invoice.status == InvoiceStatus.SENT:
            return invoice
        if invoice.status != InvoiceStatus.DRAFT:
            raise InvalidTransition(f"Invoice {invoice.invoice_number} is {invoice.status}; only DRAFT invoices can be sent.")

        invoice.status = InvoiceStatus.SENT
        invoice.sent_at = timezone.now()
        invoice.save(update_fields=["status", "sent_at", "updated_at"])

        _audit(invoice, "invoice.sent", actor_user_id=actor_user_id, due_date=invoice.due_date)
        return invoice

    @staticmethod
    @transaction.atomic
    def record_payment(
        *,
        invoice_id: UUID,
        amount: Decimal,
        method: str = PaymentChannel.BANK_TRANSFER,
        reference: str = "",
        notes: str = "",
        status: str = PaymentStatus.COMPLETED,
        actor_user_id: int | None = None,
        at: Optional[datetime] = None,
    ) -> Payment:
        """
        Record a payment on a SENT invoice. The invoice becomes PAID once completed
        payments cover its total. A reference already recorded on the invoice is a replay
        and returns the existing payment.
        """
        if method not in PaymentChannel.values:
            raise ValidationError({"method": f"Invalid method. Allowed: {list(PaymentChannel.values)}"})
        if status not in PaymentStatus.values:
            raise ValidationError({"status": f"Invalid status. Allowed: {list(PaymentStatus.values)}"})
        amount = money(amount)
        if amount <= 0:
            raise ValidationError({"amount": "Amount must be > 0."})

        invoice = InvoiceService._lock(invoice_id)
        reference = (reference or "").strip()
        if reference:
            replay = invoice.payments.filter(reference=reference).first()
            if replay is not None:
                return replay

        if invoice.status != InvoiceStatus.SENT:
            raise InvalidTransition(f"Invoice {invoice.invoice_number} is {invoice.status}; payments need a SENT invoice.")
        if status == PaymentStatus.COMPLETED and amount > invoice.balance_due:
            raise ValidationError({"amount": f"Amount exceeds the balance due ({invoice.balance_due})."})

        now = at or timezone.now()
        payment = Payment.objects.create(
            invoice=invoice,
            tenant_id=invoice.tenant_id,
            amount=amount,
            method=method,
            status=status,
            reference=reference,
            notes=notes or "",
            completed_at=now if status == PaymentStatus.COMPLETED else None,
            recorded_by_user_id=actor_user_id,
        )
        _audit(invoice, "invoice.payment_recorded", actor_user_id=actor_user_id,
               amount=amount, method=method, status=status, reference=reference)

        if status == PaymentStatus.COMPLETED and invoice.balance_due <= 0:
            invoice.status = InvoiceStatus.PAID
            invoice.paid_at = now
            invoice.save(update_fields=["status", "paid_at", "updated_at"])
            _audit(invoice, "invoice.paid", actor_user_id=actor_user_id, total_amount=invoice.total_amount)
            logger.info("Invoice %s paid", invoice.invoice_number)
        return payment

    @staticmethod
    @transaction.atomic
    def cancel(*, invoice_id: UUID, reason: str = "", actor_user_id: int | None = None) -> Invoice:
        invoice = InvoiceService._lock(invoice_id)

        # idempotent no-op
        if invoice.status == InvoiceStatus.CANCELLED:
            return invoice
        if invoice.status not in (InvoiceStatus.DRAFT, InvoiceStatus.SENT):
            raise InvalidTransition(f"Invoice {invoice.invoice_number} is {invoice.status} and cannot be cancelled.")
        if invoice.amount_paid > 0:
            raise DocumentLocked(f"Invoice {invoice.invoice_number} has payments and cannot be cancelled.")

        invoice.status = InvoiceStatus.CANCELLED
        invoice.cancelled_at = timezone.now()
        invoice.save(update_fields=["status", "cancelled_at", "updated_at"])

        _audit(invoice, "invoice.cancelled", actor_user_id=actor_user_id, reason=reason)
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
    ) -> Invoice:
        """Email the invoice PDF; a DRAFT invoice is marked SENT once delivered."""
        from civic_core.documents.pdf import get_pdf_renderer, pdf_filename
        from civic_core.notifications.email import Attachment, get_email_sender, send_invoice_email

        conf = conf or load_billing_settings()
        invoice = Invoice.objects.select_related("quote", "tenant").get(id=invoice_id)
        if invoice.status not in (InvoiceStatus.DRAFT, InvoiceStatus.SENT):
            raise InvalidTransition(f"Invoice {invoice.invoice_number} is {invoice.status}.")

        recipient = to or invoice.client_email or (invoice.tenant.contact_email if invoice.tenant else "")
        if not recipient:
            raise ValidationError({"to": "No recipient email for this invoice."})

        renderer = renderer or get_pdf_renderer(conf)
        sender = sender or get_email_sender(conf)

        pdf = renderer.render_invoice(invoice)
        ok = send_invoice_email(
            sender,
            to=recipient,
            invoice=invoice,
            attachments=[Attachment(pdf_filename(invoice.invoice_number), pdf)],
            message=message,
        )
        if not ok:
            raise DeliveryFailure(f"Invoice {invoice.invoice_number} could not be emailed to {recipient}.")

        _audit(invoice, "invoice.emailed", actor_user_id=actor_user_id, to=recipient)
        if invoice.status == InvoiceStatus.DRAFT:
            invoice = InvoiceService.send(invoice_id=invoice.id, actor_user_id=actor_user_id)
        return invoice
