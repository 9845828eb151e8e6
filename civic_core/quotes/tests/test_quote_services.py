# civic_core/quotes/tests/test_quote_services.py
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from civic_core.audit.models import AuditEvent
from civic_core.catalog.models import BillingInterval
from civic_core.common.api.exceptions import DeliveryFailure, DocumentLocked, InvalidTransition
from civic_core.leads.models import Lead, PipelineStage
from civic_core.mandates.models import MandateOrder, OrderStatus
from civic_core.quotes.models import MandateStatus, PaymentMethod, Quote, QuoteStatus
from civic_core.quotes.selectors import get_quote, list_quotes
from civic_core.quotes.services import MandateDetails, QuoteService

pytestmark = pytest.mark.django_db


def _quote(*, tenant=None, lead=None, plan=None, payment_method=None, **extra):
    lines = [{"plan_id": plan.id}] if plan else [{"description": "Formation", "unit_price": Decimal("150.00")}]
    return QuoteService.create(
        tenant_id=getattr(tenant, "id", None),
        lead_id=getattr(lead, "id", None),
        payment_method=payment_method,
        lines=lines,
        **extra,
    )


def test_create_snapshots_client_and_prices_from_catalog(tenant, plan):
    quote = _quote(tenant=tenant, plan=plan)

    assert quote.status == QuoteStatus.DRAFT
    assert quote.quote_number.startswith(f"DV-{timezone.localdate().year}-")
    assert quote.client_name == tenant.name
    assert quote.client_email == tenant.contact_email
    assert quote.client_siret == tenant.siret

    line = quote.lines.get()
    assert line.billing_interval == BillingInterval.MONTHLY
    assert line.unit_price == Decimal("100.00")
    assert line.description == plan.name

    assert quote.subtotal == Decimal("100.00")
    assert quote.tax_amount == Decimal("20.00")
    assert quote.total == Decimal("120.00")
    assert AuditEvent.objects.filter(entity_id=quote.id, event_code="quote.created").exists()


def test_create_requires_a_client_name():
    with pytest.raises(ValidationError):
        QuoteService.create(lines=[{"description": "x", "unit_price": Decimal("1.00")}])


def test_draft_lines_can_be_added_and_removed(tenant, plan, addon):
    quote = _quote(tenant=tenant, plan=plan)

    line = QuoteService.add_line_item(quote_id=quote.id, addon_id=addon.id, quantity=2)
    quote.refresh_from_db()
    assert line.total == Decimal("40.00")
    assert quote.subtotal == Decimal("140.00")
    assert quote.total == Decimal("168.00")

    QuoteService.remove_line_item(quote_id=quote.id, line_id=line.id)
    quote.refresh_from_db()
    assert quote.subtotal == Decimal("100.00")


def test_free_text_line_needs_a_price(tenant):
    quote = _quote(tenant=tenant)
    with pytest.raises(ValidationError):
        QuoteService.add_line_item(quote_id=quote.id, description="Accompagnement")


def test_mandate_payment_method_reprices_catalog_lines_yearly(tenant, plan):
    quote = _quote(tenant=tenant, plan=plan)

    quote = QuoteService.set_payment_method(quote_id=quote.id, payment_method=PaymentMethod.ADMINISTRATIVE_MANDATE)
    quote.refresh_from_db()

    line = quote.lines.get()
    assert line.billing_interval == BillingInterval.YEARLY
    assert line.unit_price == Decimal("1000.00")
    assert quote.administrative_mandate_status == MandateStatus.PENDING
    assert quote.total == Decimal("1200.00")


def test_switching_back_to_card_clears_mandate_status(tenant, plan):
    quote = _quote(tenant=tenant, plan=plan, payment_method=PaymentMethod.ADMINISTRATIVE_MANDATE)
    assert quote.administrative_mandate_status == MandateStatus.PENDING

    quote = QuoteService.set_payment_method(quote_id=quote.id, payment_method=PaymentMethod.CARD)
    assert quote.administrative_mandate_status is None


def test_send_locks_the_quote(tenant, plan, addon):
    quote = _quote(tenant=tenant, plan=plan)
    quote = QuoteService.send(quote_id=quote.id)

    assert quote.status == QuoteStatus.SENT
    assert quote.sent_at is not None
    assert quote.public_token

    with pytest.raises(DocumentLocked):
        QuoteService.add_line_item(quote_id=quote.id, addon_id=addon.id)
    with pytest.raises(DocumentLocked):
        QuoteService.set_payment_method(quote_id=quote.id, payment_method=PaymentMethod.CARD)

    # sending twice is a no-op
    assert QuoteService.send(quote_id=quote.id).sent_at == quote.sent_at


def test_send_without_lines_is_rejected(tenant):
    quote = QuoteService.create(tenant_id=tenant.id)
    with pytest.raises(ValidationError):
        QuoteService.send(quote_id=quote.id)


def test_sending_a_stale_draft_resets_its_validity(tenant, plan):
    quote = _quote(tenant=tenant, plan=plan, valid_until=timezone.now() - timedelta(days=1))

    quote = QuoteService.send(quote_id=quote.id)
    assert quote.valid_until > timezone.now()


def test_quote_events_advance_the_lead(lead, plan):
    quote = _quote(lead=lead, plan=plan)
    assert Lead.objects.get(id=lead.id).pipeline_stage == PipelineStage.QUOTED
    assert quote.client_email == lead.email

    QuoteService.send(quote_id=quote.id)
    assert Lead.objects.get(id=lead.id).pipeline_stage == PipelineStage.AWAITING_DECISION

    QuoteService.accept(quote_id=quote.id, payment_method=PaymentMethod.CARD)
    assert Lead.objects.get(id=lead.id).pipeline_stage == PipelineStage.AWAITING_PAYMENT


def test_card_acceptance_creates_no_order(tenant, plan):
    quote = _quote(tenant=tenant, plan=plan, payment_method=PaymentMethod.CARD)
    QuoteService.send(quote_id=quote.id)

    quote = QuoteService.accept(quote_id=quote.id, accepted_by_name="M. le Maire", accepted_by_email="maire@testville.fr")

    assert quote.status == QuoteStatus.ACCEPTED
    assert quote.accepted_at is not None
    assert not MandateOrder.objects.filter(quote=quote).exists()


def test_acceptance_requires_a_payment_method(tenant, plan):
    quote = _quote(tenant=tenant, plan=plan)
    QuoteService.send(quote_id=quote.id)

    with pytest.raises(ValidationError):
        QuoteService.accept(quote_id=quote.id)
    assert Quote.objects.get(id=quote.id).status == QuoteStatus.SENT


def test_mandate_acceptance_creates_the_order(tenant, plan):
    quote = _quote(tenant=tenant, plan=plan, payment_method=PaymentMethod.ADMINISTRATIVE_MANDATE)
    QuoteService.send(quote_id=quote.id)

    QuoteService.accept(
        quote_id=quote.id,
        accepted_by_email="compta@testville.fr",
        mandate_details=MandateDetails(
            siret="216 704 825 00019",
            billing_address="Service comptabilité, 1 place de la Mairie",
            billing_service="FIN-01",
            use_chorus_pro=True,
        ),
    )

    order = MandateOrder.objects.get(quote=quote)
    assert order.status == OrderStatus.PENDING_VALIDATION
    assert order.order_number.startswith("BC-")
    assert order.client_siret == "21670482500019"
    assert order.client_email == "compta@testville.fr"
    assert order.use_chorus_pro is True
    assert order.plan_amount == Decimal("1000.00")
    assert order.total_amount == Decimal("1200.00")


def test_mandate_acceptance_rejects_a_malformed_siret(tenant, plan):
    quote = _quote(tenant=tenant, plan=plan, payment_method=PaymentMethod.ADMINISTRATIVE_MANDATE)
    QuoteService.send(quote_id=quote.id)

    with pytest.raises(ValidationError):
        QuoteService.accept(quote_id=quote.id, mandate_details=MandateDetails(siret="1234"))
    assert not MandateOrder.objects.filter(quote=quote).exists()


def test_mandate_cannot_be_chosen_at_acceptance_over_monthly_lines(tenant, plan):
    quote = _quote(tenant=tenant, plan=plan)
    QuoteService.send(quote_id=quote.id)

    with pytest.raises(InvalidTransition):
        QuoteService.accept(quote_id=quote.id, payment_method=PaymentMethod.ADMINISTRATIVE_MANDATE)

    quote.refresh_from_db()
    assert quote.status == QuoteStatus.SENT
    assert quote.payment_method is None


def test_late_acceptance_expires_the_quote(tenant, plan):
    quote = _quote(tenant=tenant, plan=plan, payment_method=PaymentMethod.CARD)
    quote = QuoteService.send(quote_id=quote.id)

    late = quote.valid_until + timedelta(minutes=1)
    with pytest.raises(InvalidTransition):
        QuoteService.accept(quote_id=quote.id, now=late)

    quote.refresh_from_db()
    assert quote.status == QuoteStatus.EXPIRED
    assert quote.expired_at == late


def test_reads_apply_lazy_expiry(tenant, plan):
    quote = _quote(tenant=tenant, plan=plan)
    quote = QuoteService.send(quote_id=quote.id)
    later = quote.valid_until + timedelta(days=1)

    assert get_quote(quote.id).status == QuoteStatus.SENT
    assert get_quote(quote.id, now=later).status == QuoteStatus.EXPIRED


def test_listing_expires_overdue_quotes(tenant, plan):
    quote = _quote(tenant=tenant, plan=plan)
    quote = QuoteService.send(quote_id=quote.id)

    expired = list_quotes(status=QuoteStatus.EXPIRED, now=quote.valid_until + timedelta(days=1))
    assert [q.id for q in expired] == [quote.id]


def test_reject_is_only_allowed_once(tenant, plan):
    quote = _quote(tenant=tenant, plan=plan)
    QuoteService.send(quote_id=quote.id)

    quote = QuoteService.reject(quote_id=quote.id, reason="Budget")
    assert quote.status == QuoteStatus.REJECTED
    assert quote.rejection_reason == "Budget"

    with pytest.raises(InvalidTransition):
        QuoteService.reject(quote_id=quote.id)
    with pytest.raises(InvalidTransition):
        QuoteService.accept(quote_id=quote.id, payment_method=PaymentMethod.CARD)


def test_draft_cannot_be_accepted(tenant, plan):
    quote = _quote(tenant=tenant, plan=plan, payment_method=PaymentMethod.CARD)
    with pytest.raises(InvalidTransition):
        QuoteService.accept(quote_id=quote.id)


def _accepted_mandate_quote(tenant, plan):
    quote = _quote(tenant=tenant, plan=plan, payment_method=PaymentMethod.ADMINISTRATIVE_MANDATE)
    QuoteService.send(quote_id=quote.id)
    return QuoteService.accept(quote_id=quote.id)


def test_approve_mandate_is_idempotent(tenant, plan):
    quote = _accepted_mandate_quote(tenant, plan)

    first = QuoteService.approve_mandate(quote_id=quote.id)
    second = QuoteService.approve_mandate(quote_id=quote.id)

    assert first.administrative_mandate_status == MandateStatus.APPROVED
    assert second.mandate_decided_at == first.mandate_decided_at

    with pytest.raises(InvalidTransition):
        QuoteService.reject_mandate(quote_id=quote.id)


def test_reject_mandate_cancels_the_open_order(tenant, plan):
    quote = _accepted_mandate_quote(tenant, plan)

    quote = QuoteService.reject_mandate(quote_id=quote.id, reason="Pas de crédits")

    assert quote.administrative_mandate_status == MandateStatus.REJECTED
    order = MandateOrder.objects.get(quote=quote)
    assert order.status == OrderStatus.CANCELLED
    assert order.cancellation_reason == "Pas de crédits"


def test_mandate_decision_on_card_quote_is_invalid(tenant, plan):
    quote = _quote(tenant=tenant, plan=plan, payment_method=PaymentMethod.CARD)
    QuoteService.send(quote_id=quote.id)
    with pytest.raises(InvalidTransition):
        QuoteService.approve_mandate(quote_id=quote.id)


def test_email_to_client_attaches_the_pdf(tenant, plan, email_sender, pdf_renderer, settings):
    settings.SITE_URL = "https://app.example.fr"
    quote = _quote(tenant=tenant, plan=plan)
    QuoteService.send(quote_id=quote.id)

    QuoteService.email_to_client(quote_id=quote.id, sender=email_sender, renderer=pdf_renderer)

    [mail] = email_sender.sent
    assert mail["to"] == tenant.contact_email
    assert quote.quote_number in mail["subject"]
    assert mail["attachments"][0].filename == f"{quote.quote_number}.pdf"
    assert "https://app.example.fr/devis/" in mail["html"]


def test_email_failure_is_reported(tenant, plan, pdf_renderer, failing_email_sender):
    quote = _quote(tenant=tenant, plan=plan)
    QuoteService.send(quote_id=quote.id)

    with pytest.raises(DeliveryFailure):
        QuoteService.email_to_client(quote_id=quote.id, sender=failing_email_sender, renderer=pdf_renderer)


def test_draft_cannot_be_emailed(tenant, plan, email_sender, pdf_renderer):
    quote = _quote(tenant=tenant, plan=plan)
    with pytest.raises(InvalidTransition):
        QuoteService.email_to_client(quote_id=quote.id, sender=email_sender, renderer=pdf_renderer)
    assert email_sender.sent == []
