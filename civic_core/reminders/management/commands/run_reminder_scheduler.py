# civic_core/reminders/management/commands/run_reminder_scheduler.py
from __future__ import annotations

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger
from django.core.management.base import BaseCommand
from django.db import close_old_connections

from civic_core.common.conf import load_billing_settings
from civic_core.reminders.services import RenewalReminderScheduler

logger = logging.getLogger(__name__)


def run_reminders_job() -> None:
    close_old_connections()
    try:
        RenewalReminderScheduler().run()
    except Exception:
        # keep the scheduler alive; the next tick retries
        logger.exception("Renewal reminder run failed")
    finally:
        close_old_connections()


class Command(BaseCommand):
    help = "Run the renewal reminder scheduler in the foreground (one instance per deployment)."

    def add_arguments(self, parser):
        parser.add_argument("--interval", type=int, default=None, help="Seconds between runs (default from settings).")
        parser.add_argument("--no-initial-run", action="store_true", help="Wait one interval before the first run.")

    def handle(self, *args, **opts):
        conf = load_billing_settings()
        interval = opts["interval"] or conf.reminder_interval_seconds

        scheduler = BlockingScheduler()
        scheduler.add_job(
            run_reminders_job,
            IntervalTrigger(seconds=interval),
            id="renewal_reminders",
            name="Renewal reminders",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        if not opts["no_initial_run"]:
            run_reminders_job()

        self.stdout.write(self.style.SUCCESS(f"Reminder scheduler started (every {interval}s)"))
        logger.info("Reminder scheduler started, interval=%ss", interval)
        try:
            scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            logger.info("Reminder scheduler stopped")
            if scheduler.running:
                scheduler.shutdown()
