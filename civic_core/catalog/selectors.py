# civic_core/catalog/selectors.py
from __future__ import annotations

from decimal import Decimal
from typing import Union

from django.db.models import QuerySet

from civic_core.catalog.models import Addon, BillingInterval, Plan


def active_plans() -> QuerySet[Plan]:
    return Plan.objects.filter(is_active=True)


def active_addons() -> QuerySet[Addon]:
    return Addon.objects.filter(is_active=True)


def price_for(item: Union[Plan, Addon], interval: str) -> Decimal:
    """Catalog unit price of a plan or add-on for a billing interval."""
    yearly = interval == BillingInterval.YEARLY
    if isinstance(item, Plan):
        return item.yearly_price if yearly else item.monthly_price
    return item.default_yearly_price if yearly else item.default_monthly_price
