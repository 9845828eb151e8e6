# civic_core/leads/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from civic_core.leads.models import Lead, PipelineStage
from civic_core.tenants.models import TenantType


class LeadSerializer(serializers.ModelSerializer):
    contact_name = serializers.CharField(read_only=True)

    class Meta:
        model = Lead
        fields = [
            "id",
            "organisation_name",
            "tenant_type",
            "first_name",
            "last_name",
            "contact_name",
            "email",
            "phone",
            "message",
            "pipeline_stage",
            "stage_changed_at",
            "last_contacted_at",
            "lost_reason",
            "public_token",
            "converted_tenant",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class LeadCreateSerializer(serializers.Serializer):
    organisation_name = serializers.CharField(max_length=255)
    email = serializers.EmailField()
    tenant_type = serializers.ChoiceField(choices=TenantType.choices, default=TenantType.MAIRIE)
    first_name = serializers.CharField(max_length=128, required=False, allow_blank=True, default="")
    last_name = serializers.CharField(max_length=128, required=False, allow_blank=True, default="")
    phone = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    message = serializers.CharField(required=False, allow_blank=True, default="")


class StageMoveSerializer(serializers.Serializer):
    stage = serializers.ChoiceField(choices=PipelineStage.choices)
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class ConvertSerializer(serializers.Serializer):
    slug = serializers.SlugField(max_length=64, required=False, allow_blank=True, default="")
    trial_days = serializers.IntegerField(min_value=0, max_value=90, required=False, allow_null=True)
