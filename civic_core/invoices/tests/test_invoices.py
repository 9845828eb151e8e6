# civic_core/invoices/tests/test_invoices.py
from datetime import date, timedelta
from decimal import Decimal

import pytest
from rest_framework.exceptions import ValidationError

from civic_core.audit.models import AuditEvent
from civic_core.common.api.exceptions import DocumentLocked, InvalidTransition
from civic_core.documents.pdf import PdfRenderer
from civic_core.invoices.models import Invoice, Payment, PaymentChannel, PaymentStatus
from civic_core.invoices.selectors import invoices_filtered
from civic_core.invoices.services import InvoiceService
from civic_core.mandates.models import OVERDUE, InvoiceStatus
from civic_core.quotes.models import PaymentMethod
from civic_core.quotes.services import QuoteService
from civic_core.tenants.services import TenantService

pytestmark = pytest.mark.django_db


class HtmlRecordingRenderer(PdfRenderer):
    def __init__(self, conf=None):
        super().__init__(conf)
        self.html = []

    def _render(self, template_name, context):
        self.html.append(self.render_html(template_name, context))
        return b"%PDF-1.4 fake"


def _card_quote(*, plan, addon=None, tenant=None, lead=None, accept=True):
    lines = [{"plan_id": plan.id}]
    if addon is not None:
        lines.append({"addon_id": addon.id, "quantity": 2})
    quote = QuoteService.create(
        tenant_id=getattr(tenant, "id", None),
        lead_id=getattr(lead, "id", None),
        payment_method=PaymentMethod.CARD,
        lines=lines,
    )
    QuoteService.send(quote_id=quote.id)
    if accept:
        QuoteService.accept(quote_id=quote.id, accepted_by_email="dgs@testville.fr")
    return quote


def _sent_invoice(**kwargs) -> Invoice:
    quote = _card_quote(**kwargs)
    invoice = InvoiceService.create_from_quote(quote_id=quote.id)
    return InvoiceService.send(invoice_id=invoice.id)


def test_invoice_freezes_the_quote_lines(tenant, plan, addon, conf):
    quote = _card_quote(plan=plan, addon=addon, tenant=tenant)

    invoice = InvoiceService.create_from_quote(quote_id=quote.id, today=date(2026, 1, 10), conf=conf)

    assert invoice.invoice_number == "FA-2026-00001"
    assert invoice.status == InvoiceStatus.DRAFT
    assert invoice.tenant_id == tenant.id
    assert invoice.client_email == "dgs@testville.fr"
    assert invoice.due_date == date(2026, 2, 9)
    assert [(l.description, l.quantity, l.total) for l in invoice.lines.all()] == [
        (plan.name, 1, Decimal("100.00")),
        (addon.name, 2, Decimal("40.00")),
    ]
    assert invoice.subtotal == Decimal("140.00")
    assert invoice.tax_amount == Decimal("28.00")
    assert invoice.total_amount == Decimal("168.00")

    plan.monthly_price = Decimal("150.00")
    plan.save()
    assert Invoice.objects.get(id=invoice.id).lines.first().unit_price == Decimal("100.00")


def test_invoicing_a_quote_twice_returns_the_same_invoice(tenant, plan):
    quote = _card_quote(plan=plan, tenant=tenant)

    first = InvoiceService.create_from_quote(quote_id=quote.id)
    second = InvoiceService.create_from_quote(quote_id=quote.id)

    assert first.id == second.id
    assert Invoice.objects.filter(quote=quote).count() == 1
    assert first.lines.count() == 1


def test_only_accepted_card_quotes_are_invoiced(tenant, plan):
    sent = _card_quote(plan=plan, tenant=tenant, accept=False)
    with pytest.raises(InvalidTransition):
        InvoiceService.create_from_quote(quote_id=sent.id)

    mandate = QuoteService.create(
        tenant_id=tenant.id,
        payment_method=PaymentMethod.ADMINISTRATIVE_MANDATE,
        lines=[{"plan_id": plan.id}],
    )
    QuoteService.send(quote_id=mandate.id)
    QuoteService.accept(quote_id=mandate.id)
    with pytest.raises(InvalidTransition):
        InvoiceService.create_from_quote(quote_id=mandate.id)

    assert not Invoice.objects.exists()


def test_partial_payments_until_paid(tenant, plan):
    invoice = _sent_invoice(plan=plan, tenant=tenant)

    InvoiceService.record_payment(invoice_id=invoice.id, amount=Decimal("100.00"), reference="VIR-1")
    invoice.refresh_from_db()
    assert invoice.status == InvoiceStatus.SENT
    assert invoice.balance_due == Decimal("20.00")

    payment = InvoiceService.record_payment(
        invoice_id=invoice.id, amount=Decimal("20.00"), method=PaymentChannel.CHECK, reference="CHQ-7"
    )
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.completed_at is not None

    invoice.refresh_from_db()
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.paid_at == payment.completed_at
    assert invoice.balance_due == Decimal("0.00")
    assert AuditEvent.objects.filter(entity_id=invoice.id, event_code="invoice.paid").count() == 1


def test_known_reference_is_a_replay(tenant, plan):
    invoice = _sent_invoice(plan=plan, tenant=tenant)

    first = InvoiceService.record_payment(invoice_id=invoice.id, amount=Decimal("120.00"), reference="pi_42")
    again = InvoiceService.record_payment(invoice_id=invoice.id, amount=Decimal("120.00"), reference="pi_42")

    assert first.id == again.id
    assert Payment.objects.filter(invoice=invoice).count() == 1


def test_failed_payment_does_not_count(tenant, plan):
    invoice = _sent_invoice(plan=plan, tenant=tenant)

    failed = InvoiceService.record_payment(
        invoice_id=invoice.id, amount=Decimal("120.00"), method=PaymentChannel.CARD, status=PaymentStatus.FAILED
    )

    assert failed.completed_at is None
    invoice.refresh_from_db()
    assert invoice.status == InvoiceStatus.SENT
    assert invoice.balance_due == Decimal("120.00")


def test_payment_validation(tenant, plan):
    quote = _card_quote(plan=plan, tenant=tenant)
    invoice = InvoiceService.create_from_quote(quote_id=quote.id)

    with pytest.raises(InvalidTransition):
        InvoiceService.record_payment(invoice_id=invoice.id, amount=Decimal("10.00"))

    InvoiceService.send(invoice_id=invoice.id)
    with pytest.raises(ValidationError):
        InvoiceService.record_payment(invoice_id=invoice.id, amount=Decimal("120.01"))
    with pytest.raises(ValidationError):
        InvoiceService.record_payment(invoice_id=invoice.id, amount=Decimal("0"))
    with pytest.raises(ValidationError):
        InvoiceService.record_payment(invoice_id=invoice.id, amount=Decimal("10.00"), method="BITCOIN")


def test_cancel_is_refused_once_money_came_in(tenant, plan):
    invoice = _sent_invoice(plan=plan, tenant=tenant)
    InvoiceService.record_payment(invoice_id=invoice.id, amount=Decimal("50.00"))

    with pytest.raises(DocumentLocked):
        InvoiceService.cancel(invoice_id=invoice.id)

    other = _sent_invoice(plan=plan, tenant=tenant)
    assert InvoiceService.cancel(invoice_id=other.id, reason="doublon").status == InvoiceStatus.CANCELLED
    assert InvoiceService.cancel(invoice_id=other.id).status == InvoiceStatus.CANCELLED


def test_overdue_filter(tenant, plan):
    invoice = _sent_invoice(plan=plan, tenant=tenant)
    after_due = invoice.due_date + timedelta(days=1)

    assert invoice.display_status(after_due) == OVERDUE
    assert list(invoices_filtered(status=OVERDUE, today=after_due)) == [invoice]
    assert list(invoices_filtered(status=OVERDUE, today=invoice.due_date)) == []


def test_email_renders_the_line_items(tenant, plan, addon, email_sender, conf):
    quote = _card_quote(plan=plan, addon=addon, tenant=tenant)
    invoice = InvoiceService.create_from_quote(quote_id=quote.id)
    renderer = HtmlRecordingRenderer(conf)

    invoice = InvoiceService.email_to_client(invoice_id=invoice.id, sender=email_sender, renderer=renderer)

    assert invoice.status == InvoiceStatus.SENT
    [html] = renderer.html
    assert addon.name in html
    assert "Période" not in html
    [mail] = email_sender.sent
    assert mail["to"] == "dgs@testville.fr"
    assert mail["attachments"][0].filename == f"{invoice.invoice_number}.pdf"


def test_lead_conversion_attaches_invoices_and_payments(lead, plan):
    quote = _card_quote(plan=plan, lead=lead)
    invoice = InvoiceService.create_from_quote(quote_id=quote.id)
    InvoiceService.send(invoice_id=invoice.id)
    payment = InvoiceService.record_payment(invoice_id=invoice.id, amount=Decimal("120.00"))
    assert invoice.tenant_id is None

    tenant = TenantService.create_from_lead(lead_id=lead.id, trial_days=None)

    assert Invoice.objects.get(id=invoice.id).tenant_id == tenant.id
    assert Payment.objects.get(id=payment.id).tenant_id == tenant.id
    assert AuditEvent.objects.filter(entity_id=invoice.id, tenant_id=tenant.id).exists()


def test_invoice_api_flow(api_client, tenant, plan, fake_pdf):
    quote = _card_quote(plan=plan, tenant=tenant)

    res = api_client.post("/api/v1/invoices/", {"quote_id": str(quote.id)}, format="json")
    assert res.status_code == 201
    invoice_id = res.data["id"]
    assert res.data["status"] == InvoiceStatus.DRAFT
    assert len(res.data["lines"]) == 1
    assert res.data["balance_due"] == "120.00"

    res = api_client.post(f"/api/v1/invoices/{invoice_id}/send/")
    assert res.data["status"] == InvoiceStatus.SENT

    res = api_client.post(
        f"/api/v1/invoices/{invoice_id}/payments/",
        {"amount": "120.00", "method": PaymentChannel.BANK_TRANSFER, "reference": "VIR-2026-9"},
        format="json",
    )
    assert res.status_code == 201
    assert res.data["status"] == PaymentStatus.COMPLETED

    res = api_client.get(f"/api/v1/invoices/{invoice_id}/")
    assert res.data["status"] == InvoiceStatus.PAID
    assert res.data["amount_paid"] == "120.00"
    assert len(res.data["payments"]) == 1

    res = api_client.get("/api/v1/invoices/", {"status": "PAID", "tenant": str(tenant.id)})
    assert res.data["count"] == 1

    res = api_client.get(f"/api/v1/invoices/{invoice_id}/pdf/")
    assert res.status_code == 200
    assert res["Content-Type"] == "application/pdf"


def test_invoicing_an_unaccepted_quote_is_a_conflict(api_client, tenant, plan):
    quote = _card_quote(plan=plan, tenant=tenant, accept=False)

    res = api_client.post("/api/v1/invoices/", {"quote_id": str(quote.id)}, format="json")

    assert res.status_code == 409
    assert res.data["error"]["code"] == "invalid_transition"
