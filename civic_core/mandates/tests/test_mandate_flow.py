# civic_core/mandates/tests/test_mandate_flow.py
from datetime import date, timedelta
from decimal import Decimal

import pytest
from rest_framework.exceptions import ValidationError

from civic_core.audit.models import AuditEvent
from civic_core.common.api.exceptions import DocumentLocked, InvalidTransition
from civic_core.leads.models import Lead, PipelineStage
from civic_core.mandates.models import OVERDUE, InvoiceStatus, MandateInvoice, MandateOrder, OrderStatus
from civic_core.mandates.selectors import invoices_filtered
from civic_core.mandates.services import InvoiceService, OrderService
from civic_core.quotes.models import PaymentMethod
from civic_core.quotes.services import QuoteService
from civic_core.subscriptions.models import Rail, Subscription
from civic_core.tenants.models import BillingStatus, Tenant

pytestmark = pytest.mark.django_db


def _order(*, plan, addon=None, tenant=None, lead=None) -> MandateOrder:
    lines = [{"plan_id": plan.id}]
    if addon is not None:
        lines.append({"addon_id": addon.id, "quantity": 2})
    quote = QuoteService.create(
        tenant_id=getattr(tenant, "id", None),
        lead_id=getattr(lead, "id", None),
        payment_method=PaymentMethod.ADMINISTRATIVE_MANDATE,
        lines=lines,
    )
    QuoteService.send(quote_id=quote.id)
    QuoteService.accept(quote_id=quote.id)
    return MandateOrder.objects.get(quote=quote)


def _accepted_order(**kwargs) -> MandateOrder:
    order = _order(**kwargs)
    OrderService.attach_purchase_order(order_id=order.id, purchase_order_number="BC-CLIENT-42", engagement_number="ENG-7")
    return OrderService.validate(order_id=order.id)


def test_order_lifecycle_to_accepted(tenant, plan):
    order = _order(plan=plan, tenant=tenant)
    assert order.status == OrderStatus.PENDING_VALIDATION

    order = OrderService.attach_purchase_order(order_id=order.id, purchase_order_number="BC-CLIENT-42")
    assert order.status == OrderStatus.PENDING_BC
    assert order.bc_received_at is not None

    order = OrderService.validate(order_id=order.id, actor_user_id=7)
    assert order.status == OrderStatus.ACCEPTED
    assert order.validated_by_user_id == 7

    # idempotent
    assert OrderService.validate(order_id=order.id).status == OrderStatus.ACCEPTED


def test_purchase_order_number_is_required(tenant, plan):
    order = _order(plan=plan, tenant=tenant)
    with pytest.raises(ValidationError):
        OrderService.attach_purchase_order(order_id=order.id, purchase_order_number="  ")


def test_validate_requires_purchase_order(tenant, plan):
    order = _order(plan=plan, tenant=tenant)
    with pytest.raises(InvalidTransition):
        OrderService.validate(order_id=order.id)


def test_order_snapshot_splits_plan_and_addons(tenant, plan, addon):
    order = _order(plan=plan, addon=addon, tenant=tenant)

    assert order.plan_id == plan.id
    assert order.plan_amount == Decimal("1000.00")
    assert order.addons_amount == Decimal("400.00")
    assert order.addons_snapshot == [
        {
            "id": str(addon.id),
            "name": addon.name,
            "quantity": 2,
            "unit_price": "200.00",
            "total_price": "400.00",
        }
    ]
    assert order.subtotal == Decimal("1400.00")
    assert order.total_amount == Decimal("1680.00")


def test_invoice_keeps_the_price_frozen_at_order_time(tenant, plan):
    order = _accepted_order(plan=plan, tenant=tenant)

    plan.yearly_price = Decimal("1500.00")
    plan.save()

    invoice = OrderService.invoice(order_id=order.id)

    assert invoice.plan_amount == Decimal("1000.00")
    assert invoice.total_amount == order.total_amount
    assert invoice.plan_name == order.plan_name


def test_invoicing_twice_returns_the_same_invoice(tenant, plan):
    order = _accepted_order(plan=plan, tenant=tenant)

    first = OrderService.invoice(order_id=order.id)
    second = OrderService.invoice(order_id=order.id)

    assert first.id == second.id
    assert first.invoice_number == second.invoice_number
    assert MandateInvoice.objects.filter(order=order).count() == 1
    assert MandateOrder.objects.get(id=order.id).status == OrderStatus.INVOICED


def test_invoice_period_and_due_date(tenant, plan, conf):
    order = _accepted_order(plan=plan, tenant=tenant)

    invoice = OrderService.invoice(order_id=order.id, today=date(2026, 1, 10), conf=conf)

    assert invoice.invoice_number == "FA-2026-00001"
    assert invoice.status == InvoiceStatus.DRAFT
    assert invoice.period_start == date(2026, 1, 10)
    assert invoice.period_end == date(2027, 1, 10)
    assert invoice.due_date == date(2026, 2, 9)
    assert invoice.payment_terms == "Paiement à 30 jours"


def test_invoice_period_starts_after_the_current_window(tenant, plan):
    Subscription.objects.create(
        tenant=tenant,
        rail=Rail.MANDATE,
        start_date=date(2025, 6, 1),
        end_date=date(2026, 6, 1),
        is_current=True,
    )
    order = _accepted_order(plan=plan, tenant=tenant)

    invoice = OrderService.invoice(order_id=order.id, today=date(2026, 5, 1))

    assert invoice.period_start == date(2026, 6, 1)
    assert invoice.period_end == date(2027, 6, 1)


def test_order_must_be_accepted_before_invoicing(tenant, plan):
    order = _order(plan=plan, tenant=tenant)
    with pytest.raises(InvalidTransition):
        OrderService.invoice(order_id=order.id)


def test_invoiced_order_is_locked(tenant, plan):
    order = _accepted_order(plan=plan, tenant=tenant)
    OrderService.invoice(order_id=order.id)

    with pytest.raises(DocumentLocked):
        OrderService.reject(order_id=order.id, reason="late")
    with pytest.raises(DocumentLocked):
        OrderService.cancel(order_id=order.id)
    with pytest.raises(DocumentLocked):
        QuoteService.reject_mandate(quote_id=order.quote_id)


def test_rejected_order_cannot_be_cancelled(tenant, plan):
    order = _order(plan=plan, tenant=tenant)

    order = OrderService.reject(order_id=order.id, reason="Crédits non votés")
    assert order.status == OrderStatus.REJECTED
    assert order.rejection_reason == "Crédits non votés"

    with pytest.raises(InvalidTransition):
        OrderService.cancel(order_id=order.id)


def test_overdue_is_computed_not_stored(tenant, plan):
    order = _accepted_order(plan=plan, tenant=tenant)
    invoice = OrderService.invoice(order_id=order.id, today=date(2026, 1, 10))
    invoice = InvoiceService.send(invoice_id=invoice.id)

    on_due_date = invoice.due_date
    after_due_date = invoice.due_date + timedelta(days=1)

    assert invoice.display_status(on_due_date) == InvoiceStatus.SENT
    assert invoice.display_status(after_due_date) == OVERDUE
    assert MandateInvoice.objects.get(id=invoice.id).status == InvoiceStatus.SENT

    assert list(invoices_filtered(status=OVERDUE, today=after_due_date)) == [invoice]
    assert list(invoices_filtered(status=OVERDUE, today=on_due_date)) == []


def test_record_mandate_keeps_invoice_sent(tenant, plan):
    order = _accepted_order(plan=plan, tenant=tenant)
    invoice = OrderService.invoice(order_id=order.id)

    with pytest.raises(InvalidTransition):
        InvoiceService.record_mandate(invoice_id=invoice.id)

    InvoiceService.send(invoice_id=invoice.id)
    invoice = InvoiceService.record_mandate(invoice_id=invoice.id)

    assert invoice.status == InvoiceStatus.SENT
    assert invoice.is_mandated


def test_payment_opens_the_subscription_window(tenant, plan):
    order = _accepted_order(plan=plan, tenant=tenant)
    invoice = OrderService.invoice(order_id=order.id)
    InvoiceService.send(invoice_id=invoice.id)

    invoice = InvoiceService.mark_paid(invoice_id=invoice.id, payment_reference="VIR-2026-001")
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.paid_at is not None

    sub = Subscription.objects.get(invoice=invoice)
    assert sub.rail == Rail.MANDATE
    assert sub.is_current
    assert sub.start_date == invoice.period_start
    assert sub.end_date == invoice.period_end

    tenant.refresh_from_db()
    assert tenant.billing_status == BillingStatus.ACTIVE
    assert tenant.plan_id == plan.id

    # paying again changes nothing
    InvoiceService.mark_paid(invoice_id=invoice.id)
    assert Subscription.objects.filter(tenant=tenant).count() == 1


def test_draft_invoice_cannot_be_paid(tenant, plan):
    order = _accepted_order(plan=plan, tenant=tenant)
    invoice = OrderService.invoice(order_id=order.id)

    with pytest.raises(InvalidTransition):
        InvoiceService.mark_paid(invoice_id=invoice.id)


def test_prospect_payment_converts_the_lead(lead, plan):
    order = _accepted_order(plan=plan, lead=lead)
    assert order.tenant_id is None

    invoice = OrderService.invoice(order_id=order.id)
    InvoiceService.send(invoice_id=invoice.id)
    invoice = InvoiceService.mark_paid(invoice_id=invoice.id)

    lead = Lead.objects.get(id=lead.id)
    assert lead.pipeline_stage == PipelineStage.CONVERTED
    tenant = Tenant.objects.get(id=lead.converted_tenant_id)
    assert tenant.billing_status == BillingStatus.ACTIVE
    assert tenant.trial_ends_at is None

    assert MandateInvoice.objects.get(id=invoice.id).tenant_id == tenant.id
    assert MandateOrder.objects.get(id=order.id).tenant_id == tenant.id
    assert Subscription.objects.get(tenant=tenant).invoice_id == invoice.id


def test_cancel_invoice(tenant, plan):
    order = _accepted_order(plan=plan, tenant=tenant)
    invoice = OrderService.invoice(order_id=order.id)

    invoice = InvoiceService.cancel(invoice_id=invoice.id, reason="Erreur de saisie")
    assert invoice.status == InvoiceStatus.CANCELLED
    assert InvoiceService.cancel(invoice_id=invoice.id).status == InvoiceStatus.CANCELLED

    with pytest.raises(InvalidTransition):
        InvoiceService.send(invoice_id=invoice.id)


def test_email_marks_draft_invoice_sent(tenant, plan, email_sender, pdf_renderer):
    order = _accepted_order(plan=plan, tenant=tenant)
    invoice = OrderService.invoice(order_id=order.id)

    invoice = InvoiceService.email_to_client(
        invoice_id=invoice.id,
        message="Merci de votre confiance.",
        sender=email_sender,
        renderer=pdf_renderer,
    )

    assert invoice.status == InvoiceStatus.SENT
    [mail] = email_sender.sent
    assert mail["to"] == tenant.contact_email
    assert "Merci de votre confiance." in mail["html"]
    assert mail["attachments"][0].filename == f"{invoice.invoice_number}.pdf"


def test_every_transition_is_audited(tenant, plan):
    order = _accepted_order(plan=plan, tenant=tenant)
    invoice = OrderService.invoice(order_id=order.id)

    codes = set(AuditEvent.objects.filter(entity_id=order.id).values_list("event_code", flat=True))
    assert codes == {"order.created", "order.bc_attached", "order.validated", "order.invoiced"}
    assert AuditEvent.objects.filter(entity_id=invoice.id, event_code="invoice.created", entity_type="MandateInvoice").exists()


def test_second_order_for_the_same_quote_is_refused(tenant, plan):
    order = _order(plan=plan, tenant=tenant)

    with pytest.raises(DocumentLocked):
        OrderService.create_from_quote(quote=order.quote)

    assert MandateOrder.objects.count() == 1


def test_concurrent_invoice_row_makes_invoicing_fail_cleanly(tenant, plan):
    order = _accepted_order(plan=plan, tenant=tenant)
    # another transaction inserted the invoice while this order still reads ACCEPTED
    MandateInvoice.objects.create(
        invoice_number="FA-2026-09999",
        order=order,
        tenant=tenant,
        client_name=order.client_name,
        period_start=date(2026, 1, 1),
        period_end=date(2027, 1, 1),
        due_date=date(2026, 1, 31),
    )

    with pytest.raises(DocumentLocked):
        OrderService.invoice(order_id=order.id)

    assert MandateInvoice.objects.filter(order=order).count() == 1
    assert MandateOrder.objects.get(id=order.id).status == OrderStatus.ACCEPTED
