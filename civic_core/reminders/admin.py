# civic_core/reminders/admin.py
from django.contrib import admin

from civic_core.reminders.models import RenewalReminder


@admin.register(RenewalReminder)
class RenewalReminderAdmin(admin.ModelAdmin):
    list_display = (
        "tenant", "context", "reminder_level", "expiry_date", "status", "retry_count", "scheduled_for", "sent_at",
    )
    list_filter = ("status", "context", "reminder_level")
    search_fields = ("tenant__name", "window_key", "email_to")
    ordering = ("-scheduled_for",)
    readonly_fields = ("id", "window_key", "created_at", "updated_at")
