# civic_core/reminders/management/commands/process_renewal_reminders.py
from __future__ import annotations

from django.core.management.base import BaseCommand
from django.utils import timezone

from civic_core.reminders.services import RenewalReminderScheduler


class Command(BaseCommand):
    help = "Run one renewal reminder pass: schedule due levels, then send due reminders."

    def add_arguments(self, parser):
        parser.add_argument("--dry-run", action="store_true", help="Print what would happen; do not write or send.")

    def handle(self, *args, **opts):
        scheduler = RenewalReminderScheduler()
        now = timezone.now()

        if opts["dry_run"]:
            stats = scheduler.preview(now)
            for line in stats.planned:
                self.stdout.write(f"would schedule: {line}")
            self.stdout.write(f"DRY RUN: reminders that would be scheduled: {stats.scheduled}")
            self.stdout.write(f"DRY RUN: reminders due for sending: {stats.sent}")
            return

        stats = scheduler.run(now)
        self.stdout.write(
            self.style.SUCCESS(
                f"Scheduled: {stats.scheduled}, sent: {stats.sent}, retried: {stats.retried}, "
                f"failed: {stats.failed}, cancelled: {stats.cancelled}"
            )
        )
