# civic_core/subscriptions/admin.py
from django.contrib import admin

from civic_core.subscriptions.models import Subscription


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ("tenant", "rail", "status", "start_date", "end_date", "is_current", "closed_at")
    list_filter = ("rail", "status", "is_current")
    search_fields = ("tenant__name", "tenant__slug", "external_reference")
    ordering = ("-start_date",)
    readonly_fields = ("id", "invoice", "previous", "created_at", "updated_at")
