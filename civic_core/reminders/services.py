# civic_core/reminders/services.py
"""
Renewal reminder scheduler.

Two phases per run:
  1. scheduling: make sure the escalation level that is due for each expiry
     window exists (insert-if-absent, guarded by a partial unique constraint);
  2. dispatch: send due PENDING reminders, one row lock per reminder. A
     reminder whose window is no longer the tenant's open one is cancelled.

A failed send stays PENDING and is retried on the next run, so the backoff is
the run interval. After `reminder_max_retries` failures the reminder is FAILED.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Iterator, List, Optional, Tuple
from uuid import UUID

from django.db import IntegrityError, transaction
from django.utils import timezone

from civic_core.common.api.exceptions import DuplicateReminder, InvalidTransition
from civic_core.common.conf import BillingSettings, ReminderLevel, load_billing_settings
from civic_core.notifications.email import (
    EmailSender,
    get_email_sender,
    send_subscription_expiry_reminder,
    send_trial_expiry_reminder,
)
from civic_core.reminders.models import (
    ReminderContext,
    ReminderStatus,
    RenewalReminder,
    subscription_window_key,
    trial_window_key,
)
from civic_core.subscriptions.models import Subscription
from civic_core.subscriptions.selectors import current_mandate_subscriptions
from civic_core.tenants.models import BillingStatus, Tenant
from civic_core.tenants.selectors import reminder_candidates_qs

logger = logging.getLogger(__name__)

DEFAULT_PLAN_NAME = "Abonnement"


@transaction.atomic
def cancel_pending_reminders(*, tenant_id: UUID, reason: str, window_key: Optional[str] = None) -> int:
    """Cancel every PENDING reminder of a tenant (optionally of a single window)."""
    qs = RenewalReminder.objects.filter(tenant_id=tenant_id, status=ReminderStatus.PENDING)
    if window_key:
        qs = qs.filter(window_key=window_key)
    count = qs.update(status=ReminderStatus.CANCELLED, last_error=reason, updated_at=timezone.now())
    if count:
        logger.info("Cancelled %s pending reminder(s) for tenant %s: %s", count, tenant_id, reason)
    return count


@dataclass(frozen=True)
class ExpiryWindow:
    tenant: Tenant
    context: str
    window_key: str
    expiry_date: date
    subscription: Optional[Subscription] = None


@dataclass
class RunStats:
    scheduled: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    cancelled: int = 0
    skipped: int = 0
    planned: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


class RenewalReminderScheduler:
    def __init__(self, conf: BillingSettings | None = None, email_sender: EmailSender | None = None):
        self.conf = conf or load_billing_settings()
        self.email_sender = email_sender or get_email_sender(self.conf)

    # ------------------------------------------------------------------
    # scheduling
    # ------------------------------------------------------------------

    def due_level(self, days_left: int) -> Optional[ReminderLevel]:
        """
        The level whose escalation window contains `days_left`:
        lead(level) >= days_left > lead(next level).
        """
        if days_left <= 0:
            return None
        levels = self.conf.levels_by_lead_time()
        for i, level in enumerate(levels):
            next_lead = levels[i + 1].days_before_expiry if i + 1 < len(levels) else 0
            if level.days_before_expiry >= days_left > next_lead:
                return level
        return None

    def window_for(self, tenant: Tenant, now: datetime, sub: Optional[Subscription] = None) -> Optional[ExpiryWindow]:
        """The tenant's open expiry window, or None when nothing is about to expire."""
        if tenant.billing_status == BillingStatus.TRIAL:
            if tenant.trial_ends_at and tenant.trial_ends_at > now:
                expiry = timezone.localtime(tenant.trial_ends_at).date()
                return ExpiryWindow(tenant, ReminderContext.TRIAL, trial_window_key(expiry), expiry)
        elif tenant.billing_status == BillingStatus.ACTIVE:
            if sub is not None and sub.end_date > timezone.localtime(now).date():
                return ExpiryWindow(
                    tenant,
                    ReminderContext.SUBSCRIPTION,
                    subscription_window_key(sub.id),
                    sub.end_date,
                    sub,
                )
        return None

    def windows(self, now: datetime) -> Iterator[ExpiryWindow]:
        mandate_subs = {s.tenant_id: s for s in current_mandate_subscriptions()}

        for tenant in reminder_candidates_qs():
            window = self.window_for(tenant, now, mandate_subs.get(tenant.id))
            if window is not None:
                yield window

    def _due(self, now: datetime) -> Iterator[Tuple[ExpiryWindow, ReminderLevel]]:
        today = timezone.localtime(now).date()
        for window in self.windows(now):
            level = self.due_level((window.expiry_date - today).days)
            if level is not None:
                yield window, level

    def _insert(self, window: ExpiryWindow, level: ReminderLevel, now: datetime) -> RenewalReminder:
        try:
            with transaction.atomic():
                return RenewalReminder.objects.create(
                    tenant=window.tenant,
                    subscription=window.subscription,
                    context=window.context,
                    window_key=window.window_key,
                    reminder_level=level.level,
                    days_before_expiry=level.days_before_expiry,
                    expiry_date=window.expiry_date,
                    scheduled_for=now,
                    email_to=window.tenant.contact_email,
                )
        except IntegrityError as exc:
            raise DuplicateReminder(f"{window.window_key} level {level.level}") from exc

    def schedule(self, now: Optional[datetime] = None, stats: Optional[RunStats] = None) -> RunStats:
        now = now or timezone.now()
        stats = stats or RunStats()

        for window, level in self._due(now):
            try:
                self._insert(window, level, now)
            except DuplicateReminder:
                continue
            stats.scheduled += 1
            logger.info(
                "Scheduled level %s reminder for %s (%s, expires %s)",
                level.level, window.tenant.slug, window.window_key, window.expiry_date,
            )
        return stats

    # ------------------------------------------------------------------
    # dispatch
    # ------------------------------------------------------------------

    def _send(self, reminder: RenewalReminder, tenant: Tenant, to: str, today: date) -> bool:
        days_remaining = max(0, (reminder.expiry_date - today).days)

        if reminder.context == ReminderContext.TRIAL:
            return send_trial_expiry_reminder(
                self.email_sender,
                to=to,
                tenant_name=tenant.name,
                expiry_date=reminder.expiry_date,
                days_remaining=days_remaining,
            )

        plan = None
        if reminder.subscription_id:
            plan = Subscription.objects.filter(id=reminder.subscription_id).values_list("plan__name", flat=True).first()
        plan_name = plan or (tenant.plan.name if tenant.plan_id else DEFAULT_PLAN_NAME)
        return send_subscription_expiry_reminder(
            self.email_sender,
            to=to,
            tenant_name=tenant.name,
            plan_name=plan_name,
            expiry_date=reminder.expiry_date,
            days_remaining=days_remaining,
            grace_period_days=self.conf.grace_period_days,
        )

    @staticmethod
    def _cancel(reminder: RenewalReminder, reason: str) -> None:
        reminder.status = ReminderStatus.CANCELLED
        reminder.last_error = reason
        reminder.save(update_fields=["status", "last_error", "updated_at"])
        logger.info("Reminder %s cancelled: %s", reminder.id, reason)

    def _record_failure(self, reminder: RenewalReminder, error: str, stats: RunStats) -> None:
        reminder.retry_count += 1
        reminder.last_error = error
        if reminder.retry_count >= self.conf.reminder_max_retries:
            reminder.status = ReminderStatus.FAILED
            reminder.last_error = "Max retries exceeded"
            stats.failed += 1
            logger.error(
                "Reminder %s (%s level %s) failed after %s attempts: %s",
                reminder.id, reminder.window_key, reminder.reminder_level, reminder.retry_count, error,
            )
        else:
            stats.retried += 1
            logger.warning(
                "Reminder %s attempt %s failed: %s",
                reminder.id, reminder.retry_count, error,
            )
        reminder.save(update_fields=["status", "retry_count", "last_error", "updated_at"])

    @transaction.atomic
    def dispatch_one(self, reminder_id: UUID, now: datetime, stats: RunStats) -> None:
        reminder = RenewalReminder.objects.select_for_update().get(id=reminder_id)
        if reminder.status != ReminderStatus.PENDING:
            stats.skipped += 1
            return

        tenant = Tenant.objects.select_related("plan").filter(id=reminder.tenant_id).first()
        if tenant is None:
            self._cancel(reminder, "Tenant not found")
            stats.cancelled += 1
            return
        if tenant.is_archived:
            self._cancel(reminder, "Tenant archived")
            stats.cancelled += 1
            return

        # trial moved, window renewed or closed since scheduling
        live = self.window_for(tenant, now, current_mandate_subscriptions().filter(tenant=tenant).first())
        if live is None or live.window_key != reminder.window_key:
            self._cancel(reminder, "Window superseded")
            stats.cancelled += 1
            return

        to = reminder.email_to or tenant.contact_email
        try:
            ok = bool(to) and self._send(reminder, tenant, to, timezone.localtime(now).date())
            error = "" if ok else ("No recipient" if not to else "Email sending failed")
        except Exception as exc:
            logger.exception("Reminder %s raised while sending", reminder.id)
            ok, error = False, str(exc) or exc.__class__.__name__

        if not ok:
            self._record_failure(reminder, error, stats)
            return

        reminder.status = ReminderStatus.SENT
        reminder.sent_at = now
        reminder.email_to = to
        reminder.last_error = ""
        reminder.save(update_fields=["status", "sent_at", "email_to", "last_error", "updated_at"])
        stats.sent += 1
        logger.info("Reminder %s (%s level %s) sent to %s", reminder.id, reminder.window_key, reminder.reminder_level, to)

    def due_reminder_ids(self, now: datetime) -> List[UUID]:
        return list(
            RenewalReminder.objects.filter(status=ReminderStatus.PENDING, scheduled_for__lte=now)
            .order_by("scheduled_for", "reminder_level")
            .values_list("id", flat=True)
        )

    def dispatch(self, now: Optional[datetime] = None, stats: Optional[RunStats] = None) -> RunStats:
        now = now or timezone.now()
        stats = stats or RunStats()
        for reminder_id in self.due_reminder_ids(now):
            self.dispatch_one(reminder_id, now, stats)
        return stats

    # ------------------------------------------------------------------

    def run(self, now: Optional[datetime] = None) -> RunStats:
        now = now or timezone.now()
        stats = RunStats()
        self.schedule(now, stats)
        self.dispatch(now, stats)
        logger.info("Reminder run at %s: %s", now.isoformat(), stats.as_dict())
        return stats

    def preview(self, now: Optional[datetime] = None) -> RunStats:
        """What a run would do, without writing or sending anything."""
        now = now or timezone.now()
        stats = RunStats()
        for window, level in self._due(now):
            exists = (
                RenewalReminder.objects.filter(
                    tenant=window.tenant, window_key=window.window_key, reminder_level=level.level
                )
                .exclude(status=ReminderStatus.CANCELLED)
                .exists()
            )
            if not exists:
                stats.planned.append(f"{window.tenant.slug} {window.window_key} level {level.level}")
        stats.scheduled = len(stats.planned)
        stats.sent = len(self.due_reminder_ids(now))
        return stats


@transaction.atomic
def cancel_reminder(*, reminder_id: UUID, reason: str = "Cancelled by staff") -> RenewalReminder:
    reminder = RenewalReminder.objects.select_for_update().get(id=reminder_id)
    if reminder.status == ReminderStatus.CANCELLED:
        return reminder
    if reminder.status != ReminderStatus.PENDING:
        raise InvalidTransition(f"Reminder is {reminder.status}; only PENDING reminders can be cancelled.")
    RenewalReminderScheduler._cancel(reminder, reason)
    return reminder
