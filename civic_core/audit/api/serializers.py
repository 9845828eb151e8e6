# civic_core/audit/api/serializers.py
from rest_framework import serializers

from civic_core.audit.models import AuditEvent


class AuditEventSerializer(serializers.ModelSerializer):
    automatic = serializers.BooleanField(source="is_automatic", read_only=True)

    class Meta:
        model = AuditEvent
        fields = [
            "id",
            "occurred_at",
            "event_code",
            "entity_type",
            "entity_id",
            "tenant_id",
            "lead_id",
            "actor_user_id",
            "automatic",
            "metadata",
        ]
        read_only_fields = fields
