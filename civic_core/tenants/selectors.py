# civic_core/tenants/selectors.py
from __future__ import annotations

from uuid import UUID

from django.db.models import QuerySet

from civic_core.tenants.models import LifecycleStatus, Tenant


def tenant_qs() -> QuerySet[Tenant]:
    return Tenant.objects.all()


def reminder_candidates_qs() -> QuerySet[Tenant]:
    """Tenants the renewal scheduler looks at: not archived, with somewhere to write to."""
    return (
        Tenant.objects.exclude(lifecycle_status=LifecycleStatus.ARCHIVED)
        .exclude(contact_email="")
        .order_by("created_at")
    )


def get_tenant(*, tenant_id: UUID) -> Tenant:
    return Tenant.objects.get(id=tenant_id)
