# civic_core/subscriptions/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from civic_core.common.conf import load_billing_settings
from civic_core.subscriptions.models import Subscription


class SubscriptionSerializer(serializers.ModelSerializer):
    display_status = serializers.SerializerMethodField()
    plan_name = serializers.CharField(source="plan.name", read_only=True, default="")

    class Meta:
        model = Subscription
        fields = [
            "id",
            "tenant",
            "rail",
            "plan",
            "plan_name",
            "invoice",
            "external_reference",
            "status",
            "display_status",
            "start_date",
            "end_date",
            "duration_months",
            "is_current",
            "closed_at",
            "previous",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_display_status(self, obj: Subscription) -> str:
        grace = self.context.get("grace_period_days")
        if grace is None:
            grace = load_billing_settings().grace_period_days
        return obj.display_status(grace_period_days=grace)


class RenewSerializer(serializers.Serializer):
    duration_months = serializers.IntegerField(min_value=1, max_value=60, required=False, allow_null=True)
