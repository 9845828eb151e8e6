# civic_core/reminders/apps.py
from django.apps import AppConfig


class RemindersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "civic_core.reminders"
    verbose_name = "Renewal reminders"
