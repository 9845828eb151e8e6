# civic_core/conftest.py
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from civic_core.catalog.models import Addon, Plan
from civic_core.common.conf import load_billing_settings
from civic_core.documents.pdf import PdfRenderer
from civic_core.notifications.email import EmailSender
from civic_core.tenants.models import BillingStatus, Tenant


class FakeEmailSender(EmailSender):
    """
    Records every send. `results` is consumed one per call; once exhausted
    the last value keeps being returned.
    """

    def __init__(self, results=(True,)):
        self.results = list(results) or [True]
        self.sent = []

    def send(self, to, subject, html, attachments=()):
        self.sent.append({"to": to, "subject": subject, "html": html, "attachments": list(attachments)})
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


class FakePdfRenderer(PdfRenderer):
    def _render(self, template_name, context):
        # still renders the template so broken templates fail the test
        self.render_html(template_name, context)
        return b"%PDF-1.4 fake"


@pytest.fixture
def conf(db):
    return load_billing_settings()


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def pdf_renderer(conf):
    return FakePdfRenderer(conf)


@pytest.fixture
def plan(db):
    return Plan.objects.create(
        code="essentiel",
        name="Essentiel",
        monthly_price=Decimal("100.00"),
        yearly_price=Decimal("1000.00"),
    )


@pytest.fixture
def addon(db):
    return Addon.objects.create(
        code="pack-sms",
        name="Pack SMS",
        default_monthly_price=Decimal("20.00"),
        default_yearly_price=Decimal("200.00"),
    )


@pytest.fixture
def tenant(db):
    return Tenant.objects.create(
        name="Mairie de Testville",
        slug="mairie-testville",
        contact_email="mairie@testville.fr",
        siret="21670482500019",
        address="1 place de la Mairie, 67000 Testville",
        billing_status=BillingStatus.TRIAL,
    )


@pytest.fixture
def lead(db):
    from civic_core.leads.services import LeadService

    return LeadService.create(
        organisation_name="Commune de Prospectville",
        email="dgs@prospectville.fr",
        first_name="Anne",
        last_name="Martin",
    )


@pytest.fixture
def user(db):
    User = get_user_model()
    return User.objects.create_user(
        username="billing-admin",
        password="testpass",
        is_staff=True,
        is_active=True,
    )


@pytest.fixture
def api_client(user):
    c = APIClient()
    c.force_authenticate(user=user)
    return c


@pytest.fixture
def anon_client(db):
    return APIClient()


@pytest.fixture
def fake_pdf(monkeypatch, conf):
    """Route every PDF render (services and views) through FakePdfRenderer."""
    renderer = FakePdfRenderer(conf)
    factory = lambda conf=None: renderer  # noqa: E731

    monkeypatch.setattr("civic_core.documents.pdf.get_pdf_renderer", factory)
    monkeypatch.setattr("civic_core.quotes.api.views.get_pdf_renderer", factory)
    monkeypatch.setattr("civic_core.mandates.api.views.get_pdf_renderer", factory)
    monkeypatch.setattr("civic_core.invoices.api.views.get_pdf_renderer", factory)
    return renderer


@pytest.fixture
def failing_email_sender():
    return FakeEmailSender([False])


@pytest.fixture
def make_email_sender():
    return FakeEmailSender
