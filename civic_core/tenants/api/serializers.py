# civic_core/tenants/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from civic_core.tenants.models import Tenant, TenantType


class TenantSerializer(serializers.ModelSerializer):
    class Meta:
        model = Tenant
        fields = [
            "id",
            "name",
            "slug",
            "tenant_type",
            "contact_name",
            "contact_email",
            "siret",
            "address",
            "lifecycle_status",
            "billing_status",
            "trial_ends_at",
            "plan",
            "billing_interval",
            "metadata",
            "archived_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class TenantCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    contact_email = serializers.EmailField()
    slug = serializers.SlugField(max_length=64, required=False, allow_blank=True, default="")
    tenant_type = serializers.ChoiceField(choices=TenantType.choices, default=TenantType.MAIRIE)
    contact_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    siret = serializers.CharField(max_length=14, required=False, allow_blank=True, default="")
    address = serializers.CharField(required=False, allow_blank=True, default="")
    trial_days = serializers.IntegerField(min_value=0, max_value=90, required=False, allow_null=True)


