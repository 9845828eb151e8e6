# civic_core/catalog/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from civic_core.catalog.models import Addon, Plan


class PlanSerializer(serializers.ModelSerializer):
    class Meta:
        model = Plan
        fields = ["id", "code", "name", "description", "monthly_price", "yearly_price", "is_active", "display_order"]
        read_only_fields = fields


class AddonSerializer(serializers.ModelSerializer):
    class Meta:
        model = Addon
        fields = ["id", "code", "name", "description", "default_monthly_price", "default_yearly_price", "is_active"]
        read_only_fields = fields
