# civic_core/subscriptions/selectors.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from django.db.models import QuerySet

from civic_core.subscriptions.models import Rail, Subscription, SubscriptionStatus


def subscription_qs() -> QuerySet[Subscription]:
    return Subscription.objects.select_related("tenant", "plan").order_by("-start_date", "-created_at")


def current_subscription(tenant_id: UUID) -> Optional[Subscription]:
    return Subscription.objects.filter(tenant_id=tenant_id, is_current=True).first()


def current_mandate_subscriptions() -> QuerySet[Subscription]:
    """Open mandate windows, the renewal reminder candidates."""
    return Subscription.objects.filter(
        is_current=True,
        rail=Rail.MANDATE,
        status=SubscriptionStatus.ACTIVE,
    ).select_related("tenant", "plan")


def history_for_tenant(tenant_id: UUID) -> QuerySet[Subscription]:
    return subscription_qs().filter(tenant_id=tenant_id)
