# civic_core/subscriptions/models.py
from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

from django.db import models
from django.db.models import Q
from django.utils import timezone

from civic_core.catalog.models import Plan
from civic_core.common.models import UUIDModel
from civic_core.mandates.models import MandateInvoice
from civic_core.tenants.models import Tenant


class Rail(models.TextChoices):
    CARD = "CARD", "Card"
    MANDATE = "MANDATE", "Administrative mandate"


class SubscriptionStatus(models.TextChoices):
    PENDING_ACTIVATION = "PENDING_ACTIVATION", "Pending activation"
    ACTIVE = "ACTIVE", "Active"
    EXPIRED = "EXPIRED", "Expired"


class DisplayStatus(models.TextChoices):
    ACTIVE = "ACTIVE", "Active"
    PENDING_ACTIVATION = "PENDING_ACTIVATION", "Pending activation"
    EXPIRED = "EXPIRED", "Expired"
    GRACE_PERIOD = "GRACE_PERIOD", "Grace period"
    READ_ONLY = "READ_ONLY", "Read only"


class Subscription(UUIDModel):
    """
    One entitlement window of a tenant.

    Renewal opens a new row chained through `previous`; the dates of a closed
    window are never rewritten.
    """
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="subscriptions")
    rail = models.CharField(max_length=16, choices=Rail.choices)
    plan = models.ForeignKey(Plan, on_delete=models.PROTECT, null=True, blank=True, related_name="+")

    invoice = models.OneToOneField(
        MandateInvoice,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="subscription",
    )
    # card processor subscription id
    external_reference = models.CharField(max_length=128, blank=True, db_index=True)

    status = models.CharField(
        max_length=32,
        choices=SubscriptionStatus.choices,
        default=SubscriptionStatus.ACTIVE,
        db_index=True,
    )
    start_date = models.DateField()
    end_date = models.DateField(db_index=True)
    duration_months = models.PositiveSmallIntegerField(default=12)

    is_current = models.BooleanField(default=True)
    closed_at = models.DateTimeField(null=True, blank=True)
    previous = models.OneToOneField(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="next",
    )

    class Meta:
        db_table = "subscriptions_subscription"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant"],
                condition=Q(is_current=True),
                name="uq_subscription_current_per_tenant",
            ),
            models.UniqueConstraint(
                fields=["external_reference", "end_date"],
                condition=~Q(external_reference=""),
                name="uq_subscription_card_period",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant", "is_current"]),
            models.Index(fields=["rail", "end_date"]),
        ]

    def __str__(self) -> str:
        return f"{self.tenant_id} {self.start_date} -> {self.end_date}"

    @property
    def window_key(self) -> str:
        return f"SUBSCRIPTION:{self.id}"

    def display_status(self, today: Optional[date] = None, grace_period_days: int = 15) -> str:
        if self.status in (SubscriptionStatus.PENDING_ACTIVATION, SubscriptionStatus.EXPIRED):
            return self.status

        today = today or timezone.localdate()
        if today < self.end_date:
            return DisplayStatus.ACTIVE
        if today < self.end_date + timedelta(days=grace_period_days):
            return DisplayStatus.GRACE_PERIOD
        return DisplayStatus.READ_ONLY if self.rail == Rail.MANDATE else DisplayStatus.EXPIRED
