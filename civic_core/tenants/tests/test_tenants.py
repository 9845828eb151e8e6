# civic_core/tenants/tests/test_tenants.py
import pytest
from rest_framework.exceptions import ValidationError

from civic_core.audit.models import AuditEvent
from civic_core.common.api.exceptions import InvalidTransition
from civic_core.tenants.models import BillingStatus, LifecycleStatus
from civic_core.tenants.services import TenantService

pytestmark = pytest.mark.django_db

BASE = "/api/v1/tenants/"


def test_create_generates_a_unique_slug():
    first = TenantService.create(name="Mairie de Saint-Jean", contact_email="a@saint-jean.fr")
    second = TenantService.create(name="Mairie de Saint-Jean", contact_email="b@saint-jean.fr")

    assert first.slug == "mairie-de-saint-jean"
    assert second.slug == "mairie-de-saint-jean-2"
    assert first.billing_status == BillingStatus.TRIAL
    assert first.trial_ends_at is not None


def test_create_without_trial():
    tenant = TenantService.create(name="EPCI du Val", contact_email="x@val.fr", tenant_type="EPCI", trial_days=None)
    assert tenant.trial_ends_at is None


def test_create_validation(tenant):
    with pytest.raises(ValidationError):
        TenantService.create(name="", contact_email="a@b.fr")
    with pytest.raises(ValidationError):
        TenantService.create(name="Autre", contact_email="a@b.fr", tenant_type="PREFECTURE")
    with pytest.raises(ValidationError):
        TenantService.create(name="Autre", contact_email="a@b.fr", slug=tenant.slug)


def test_suspend_and_reactivate(tenant):
    tenant = TenantService.suspend(tenant_id=tenant.id, actor_user_id=3)
    assert tenant.lifecycle_status == LifecycleStatus.SUSPENDED

    tenant = TenantService.reactivate(tenant_id=tenant.id)
    assert tenant.lifecycle_status == LifecycleStatus.ACTIVE

    codes = set(AuditEvent.objects.filter(entity_id=tenant.id).values_list("event_code", flat=True))
    assert {"tenant.suspended", "tenant.active"} <= codes


def test_archived_tenant_is_frozen(tenant):
    tenant = TenantService.archive(tenant_id=tenant.id)
    assert tenant.is_archived
    assert tenant.archived_at is not None

    # archiving again is a no-op
    assert TenantService.archive(tenant_id=tenant.id).is_archived

    with pytest.raises(InvalidTransition):
        TenantService.reactivate(tenant_id=tenant.id)


def test_billing_status_is_validated(tenant):
    with pytest.raises(ValidationError):
        TenantService.set_billing_status(tenant_id=tenant.id, status="LATE")

    assert TenantService.set_billing_status(tenant_id=tenant.id, status=BillingStatus.ACTIVE).billing_status == "ACTIVE"


def test_api_create_and_list(api_client):
    res = api_client.post(
        BASE,
        {"name": "Mairie de Brignac", "contact_email": "mairie@brignac.fr", "siret": "21340041800012"},
        format="json",
    )
    assert res.status_code == 201
    assert res.data["slug"] == "mairie-de-brignac"
    assert res.data["lifecycle_status"] == LifecycleStatus.ACTIVE

    res = api_client.get(BASE, {"billing_status": BillingStatus.TRIAL})
    assert res.data["count"] == 1
    assert api_client.get(BASE, {"lifecycle_status": LifecycleStatus.ARCHIVED}).data["count"] == 0


def test_api_archive_then_suspend_is_a_conflict(api_client, tenant):
    res = api_client.post(f"{BASE}{tenant.id}/archive/", {}, format="json")
    assert res.status_code == 200
    assert res.data["lifecycle_status"] == LifecycleStatus.ARCHIVED

    res = api_client.post(f"{BASE}{tenant.id}/suspend/", {}, format="json")
    assert res.status_code == 409
    assert res.data["error"]["code"] == "invalid_transition"
