# civic_core/reminders/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from civic_core.reminders.models import RenewalReminder


class RenewalReminderSerializer(serializers.ModelSerializer):
    tenant_name = serializers.CharField(source="tenant.name", read_only=True)

    class Meta:
        model = RenewalReminder
        fields = [
            "id",
            "tenant",
            "tenant_name",
            "subscription",
            "context",
            "window_key",
            "reminder_level",
            "days_before_expiry",
            "expiry_date",
            "scheduled_for",
            "sent_at",
            "status",
            "retry_count",
            "last_error",
            "email_to",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields
