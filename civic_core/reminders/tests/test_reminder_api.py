# civic_core/reminders/tests/test_reminder_api.py
from datetime import timedelta

import pytest
from django.utils import timezone

from civic_core.reminders.models import ReminderContext, ReminderStatus, RenewalReminder

pytestmark = pytest.mark.django_db

BASE = "/api/v1/reminders/"


@pytest.fixture
def trial_tenant(tenant):
    tenant.trial_ends_at = timezone.now() + timedelta(days=10)
    tenant.save()
    return tenant


def test_run_endpoint_sends_due_reminders(api_client, trial_tenant, mailoutbox):
    res = api_client.post(f"{BASE}run/", {}, format="json")

    assert res.status_code == 200
    assert res.data["scheduled"] == 1
    assert res.data["sent"] == 1
    assert len(mailoutbox) == 1
    assert "essai" in mailoutbox[0].subject

    res = api_client.get(BASE, {"tenant": str(trial_tenant.id), "context": ReminderContext.TRIAL})
    assert res.data["count"] == 1
    assert res.data["results"][0]["status"] == ReminderStatus.SENT


def test_cancel_endpoint(api_client, trial_tenant):
    reminder = RenewalReminder.objects.create(
        tenant=trial_tenant,
        context=ReminderContext.TRIAL,
        window_key="TRIAL:2026-03-01",
        reminder_level=3,
        days_before_expiry=15,
        expiry_date=timezone.localdate() + timedelta(days=10),
        scheduled_for=timezone.now() + timedelta(hours=1),
    )

    res = api_client.post(f"{BASE}{reminder.id}/cancel/", {}, format="json")
    assert res.status_code == 200
    assert res.data["status"] == ReminderStatus.CANCELLED

    # cancelling twice is a no-op
    res = api_client.post(f"{BASE}{reminder.id}/cancel/", {}, format="json")
    assert res.status_code == 200


def test_bad_tenant_filter(api_client):
    res = api_client.get(BASE, {"tenant": "x"})
    assert res.status_code == 400
    assert res.data["error"]["code"] == "validation_error"
