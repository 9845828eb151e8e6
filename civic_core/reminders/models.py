# civic_core/reminders/models.py
from __future__ import annotations

from django.db import models
from django.db.models import Q

from civic_core.common.models import UUIDModel
from civic_core.subscriptions.models import Subscription
from civic_core.tenants.models import Tenant


class ReminderContext(models.TextChoices):
    TRIAL = "TRIAL", "Trial"
    SUBSCRIPTION = "SUBSCRIPTION", "Subscription"


class ReminderStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    SENT = "SENT", "Sent"
    FAILED = "FAILED", "Failed"
    CANCELLED = "CANCELLED", "Cancelled"


def trial_window_key(trial_end) -> str:
    return f"TRIAL:{trial_end:%Y-%m-%d}"


def subscription_window_key(subscription_id) -> str:
    return f"SUBSCRIPTION:{subscription_id}"


class RenewalReminder(UUIDModel):
    """
    One escalation level of one expiry window.

    At most one non-cancelled row per (tenant, window_key, reminder_level);
    the scheduler relies on this constraint to stay idempotent.
    """
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name="renewal_reminders")
    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reminders",
    )

    context = models.CharField(max_length=16, choices=ReminderContext.choices)
    window_key = models.CharField(max_length=64)
    reminder_level = models.PositiveSmallIntegerField()
    days_before_expiry = models.PositiveSmallIntegerField()
    expiry_date = models.DateField()

    scheduled_for = models.DateTimeField(db_index=True)
    sent_at = models.DateTimeField(null=True, blank=True)

    status = models.CharField(
        max_length=16,
        choices=ReminderStatus.choices,
        default=ReminderStatus.PENDING,
        db_index=True,
    )
    retry_count = models.PositiveSmallIntegerField(default=0)
    last_error = models.TextField(blank=True)
    email_to = models.EmailField(blank=True)

    class Meta:
        db_table = "reminders_renewal_reminder"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "window_key", "reminder_level"],
                condition=~Q(status="CANCELLED"),
                name="uq_reminder_tenant_window_level",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "scheduled_for"]),
            models.Index(fields=["tenant", "window_key"]),
        ]
        ordering = ["scheduled_for", "reminder_level"]

    def __str__(self) -> str:
        return f"{self.window_key} L{self.reminder_level} ({self.status})"
