# civic_core/subscriptions/tests/test_card_webhook.py
import hashlib
import hmac
import json
import uuid
from datetime import date

import pytest
from rest_framework.exceptions import ValidationError

from civic_core.subscriptions.models import Rail, Subscription
from civic_core.subscriptions.services import (
    EVENT_ACTIVE,
    EVENT_CANCELLED,
    CardWebhookEvent,
    SubscriptionService,
    verify_card_signature,
)
from civic_core.tenants.models import BillingStatus, LifecycleStatus

pytestmark = pytest.mark.django_db

URL = "/api/v1/billing/card-webhook/"
SECRET = "test-webhook-secret"


def _sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _event(tenant_id, event_type=EVENT_ACTIVE, reference="sub_123", start="2026-03-01", end="2026-04-01", **data):
    return {
        "type": event_type,
        "data": {
            "tenant_id": str(tenant_id),
            "subscription_id": reference,
            "current_period_start": start,
            "current_period_end": end,
            **data,
        },
    }


def _post(client, payload, *, signature=None):
    body = json.dumps(payload).encode()
    return client.post(
        URL,
        data=body,
        content_type="application/json",
        HTTP_X_CARD_SIGNATURE=_sign(body) if signature is None else signature,
    )


def test_signature_check():
    body = b'{"type": "subscription.active"}'
    assert verify_card_signature(body, _sign(body), SECRET)
    assert not verify_card_signature(body, _sign(body, "other"), SECRET)
    assert not verify_card_signature(body, "", SECRET)
    assert not verify_card_signature(body, _sign(body), "")


def test_event_parsing_requires_the_period_for_active_events(tenant):
    with pytest.raises(ValidationError):
        CardWebhookEvent.from_payload(_event(tenant.id, start=None, end=None))

    event = CardWebhookEvent.from_payload(_event(tenant.id, end="2026-04-01T00:00:00Z"))
    assert event.period_end == date(2026, 4, 1)


def test_active_event_opens_a_card_window(anon_client, tenant, plan):
    res = _post(anon_client, _event(tenant.id, plan_code=plan.code))

    assert res.status_code == 200
    assert res.data["status"] == "processed"

    sub = Subscription.objects.get(tenant=tenant)
    assert sub.rail == Rail.CARD
    assert sub.external_reference == "sub_123"
    assert sub.start_date == date(2026, 3, 1)
    assert sub.end_date == date(2026, 4, 1)
    assert sub.duration_months == 1

    tenant.refresh_from_db()
    assert tenant.billing_status == BillingStatus.ACTIVE
    assert tenant.plan_id == plan.id


def test_replayed_event_is_a_no_op(anon_client, tenant):
    first = _post(anon_client, _event(tenant.id))
    second = _post(anon_client, _event(tenant.id))

    assert first.data["subscription"]["id"] == second.data["subscription"]["id"]
    assert Subscription.objects.filter(tenant=tenant).count() == 1


def test_next_period_closes_the_previous_window(tenant):
    first = SubscriptionService.activate_from_card_webhook(CardWebhookEvent.from_payload(_event(tenant.id)))
    second = SubscriptionService.activate_from_card_webhook(
        CardWebhookEvent.from_payload(_event(tenant.id, start="2026-04-01", end="2026-05-01"))
    )

    first.refresh_from_db()
    assert not first.is_current
    assert second.is_current
    assert second.previous_id == first.id


def test_bad_signature_is_refused(anon_client, tenant):
    res = _post(anon_client, _event(tenant.id), signature="deadbeef")

    assert res.status_code == 403
    assert res.data["error"]["code"] == "permission_denied"
    assert not Subscription.objects.exists()


def test_unknown_or_archived_tenant_is_ignored(anon_client, tenant):
    res = _post(anon_client, _event(uuid.uuid4()))
    assert res.data == {"status": "ignored"}

    tenant.lifecycle_status = LifecycleStatus.ARCHIVED
    tenant.save()
    res = _post(anon_client, _event(tenant.id))
    assert res.data == {"status": "ignored"}
    assert not Subscription.objects.exists()


def test_cancelled_event_keeps_access_until_period_end(anon_client, tenant):
    _post(anon_client, _event(tenant.id))

    res = _post(anon_client, _event(tenant.id, event_type=EVENT_CANCELLED, start=None, end=None))
    assert res.data["status"] == "processed"

    sub = Subscription.objects.get(tenant=tenant)
    assert sub.is_current
    assert sub.closed_at is not None
    assert sub.end_date == date(2026, 4, 1)

    tenant.refresh_from_db()
    assert tenant.billing_status == BillingStatus.CANCELLED


def test_malformed_payload_is_a_validation_error(anon_client):
    res = _post(anon_client, {"type": EVENT_ACTIVE, "data": {"tenant_id": "nope"}})
    assert res.status_code == 400
    assert res.data["error"]["code"] == "validation_error"


@pytest.mark.parametrize("data", ["oops", ["tenant_id"], 42])
def test_non_object_data_is_a_validation_error(anon_client, data):
    res = _post(anon_client, {"type": EVENT_ACTIVE, "data": data})

    assert res.status_code == 400
    assert res.data["error"]["code"] == "validation_error"
    assert not Subscription.objects.exists()


def test_numeric_subscription_reference_is_accepted(tenant):
    event = CardWebhookEvent.from_payload(_event(tenant.id, reference=123456))

    assert event.external_reference == "123456"
