# civic_core/mandates/tests/test_mandate_api.py
import pytest
from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from rest_framework.test import APIClient

from civic_core.mandates.models import MandateOrder
from civic_core.quotes.models import PaymentMethod
from civic_core.quotes.services import QuoteService
from civic_core.subscriptions.models import Subscription

pytestmark = pytest.mark.django_db

ORDERS = "/api/v1/mandates/orders/"
INVOICES = "/api/v1/mandates/invoices/"


@pytest.fixture
def order(tenant, plan):
    quote = QuoteService.create(
        tenant_id=tenant.id,
        payment_method=PaymentMethod.ADMINISTRATIVE_MANDATE,
        lines=[{"plan_id": plan.id}],
    )
    QuoteService.send(quote_id=quote.id)
    QuoteService.accept(quote_id=quote.id)
    return MandateOrder.objects.get(quote=quote)


def test_order_to_paid_invoice(api_client, order, tenant):
    res = api_client.post(
        f"{ORDERS}{order.id}/purchase_order/",
        {"purchase_order_number": "BC-2026-118", "engagement_number": "EJ-55"},
        format="json",
    )
    assert res.status_code == 200
    assert res.data["status"] == "PENDING_BC"

    assert api_client.post(f"{ORDERS}{order.id}/validate/", {}, format="json").data["status"] == "ACCEPTED"

    first = api_client.post(f"{ORDERS}{order.id}/invoice/", {}, format="json")
    second = api_client.post(f"{ORDERS}{order.id}/invoice/", {}, format="json")
    assert first.status_code == 200
    assert first.data["id"] == second.data["id"]
    invoice_id = first.data["id"]

    assert api_client.get(f"{ORDERS}{order.id}/").data["invoice_id"] == invoice_id

    res = api_client.post(f"{INVOICES}{invoice_id}/send/", {}, format="json")
    assert res.data["status"] == "SENT"
    assert res.data["display_status"] == "SENT"
    assert res.data["is_overdue"] is False

    res = api_client.post(f"{INVOICES}{invoice_id}/mark_paid/", {"payment_reference": "VIR-884"}, format="json")
    assert res.data["status"] == "PAID"
    assert res.data["payment_reference"] == "VIR-884"
    assert Subscription.objects.filter(tenant=tenant, is_current=True).count() == 1


def test_invoice_list_filters(api_client, order):
    api_client.post(f"{ORDERS}{order.id}/purchase_order/", {"purchase_order_number": "BC-1"}, format="json")
    api_client.post(f"{ORDERS}{order.id}/validate/", {}, format="json")
    api_client.post(f"{ORDERS}{order.id}/invoice/", {}, format="json")

    assert api_client.get(INVOICES, {"status": "DRAFT"}).data["count"] == 1
    assert api_client.get(INVOICES, {"status": "OVERDUE"}).data["count"] == 0
    assert api_client.get(INVOICES, {"tenant": "nope"}).status_code == 400


def test_invoicing_a_pending_order_is_a_conflict(api_client, order):
    res = api_client.post(f"{ORDERS}{order.id}/invoice/", {}, format="json")
    assert res.status_code == 409
    assert res.data["error"]["code"] == "invalid_transition"


def test_order_pdf(api_client, order, fake_pdf):
    res = api_client.get(f"{ORDERS}{order.id}/pdf/")
    assert res.status_code == 200
    assert res["Content-Type"] == "application/pdf"
    assert f"{order.order_number}.pdf" in res["Content-Disposition"]


def test_sales_staff_cannot_validate_orders(order):
    sales = get_user_model().objects.create_user(username="commercial", password="x")
    sales.groups.add(Group.objects.create(name="SALES"))
    client = APIClient()
    client.force_authenticate(user=sales)

    assert client.get(f"{ORDERS}{order.id}/").status_code == 200
    res = client.post(f"{ORDERS}{order.id}/validate/", {}, format="json")
    assert res.status_code == 403
