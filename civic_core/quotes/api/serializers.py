# civic_core/quotes/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from civic_core.catalog.models import BillingInterval
from civic_core.quotes.models import PaymentMethod, Quote, QuoteLineItem, QuoteSource


class QuoteLineItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = QuoteLineItem
        fields = [
            "id",
            "position",
            "description",
            "quantity",
            "unit_price",
            "total",
            "plan",
            "addon",
            "billing_interval",
        ]
        read_only_fields = fields


class QuoteSerializer(serializers.ModelSerializer):
    lines = QuoteLineItemSerializer(many=True, read_only=True)
    mandate_order_id = serializers.SerializerMethodField()

    class Meta:
        model = Quote
        fields = [
            "id",
            "quote_number",
            "status",
            "source",
            "lead",
            "tenant",
            "client_name",
            "client_email",
            "client_address",
            "client_siret",
            "payment_method",
            "administrative_mandate_status",
            "mandate_decided_at",
            "subtotal",
            "tax_rate",
            "tax_amount",
            "total",
            "vat_applicable",
            "vat_notice",
            "valid_until",
            "notes",
            "public_token",
            "sent_at",
            "accepted_at",
            "accepted_by_name",
            "accepted_by_email",
            "rejected_at",
            "rejection_reason",
            "expired_at",
            "mandate_siret",
            "mandate_billing_address",
            "mandate_billing_service",
            "mandate_use_chorus_pro",
            "mandate_order_id",
            "lines",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_mandate_order_id(self, obj: Quote):
        order = getattr(obj, "mandate_order", None) if obj.is_mandate else None
        return str(order.id) if order else None


class PublicQuoteSerializer(serializers.ModelSerializer):
    """What a client sees through the public link."""
    lines = QuoteLineItemSerializer(many=True, read_only=True)

    class Meta:
        model = Quote
        fields = [
            "quote_number",
            "status",
            "client_name",
            "payment_method",
            "subtotal",
            "tax_rate",
            "tax_amount",
            "total",
            "vat_notice",
            "valid_until",
            "notes",
            "accepted_at",
            "lines",
        ]
        read_only_fields = fields


class QuoteLineCreateSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    quantity = serializers.IntegerField(min_value=1, default=1)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True, min_value=0)
    plan = serializers.UUIDField(required=False, allow_null=True)
    addon = serializers.UUIDField(required=False, allow_null=True)
    billing_interval = serializers.ChoiceField(choices=BillingInterval.choices, required=False, allow_null=True)

    def to_service_kwargs(self) -> dict:
        d = self.validated_data
        return {
            "description": d.get("description", ""),
            "quantity": d.get("quantity", 1),
            "unit_price": d.get("unit_price"),
            "plan_id": d.get("plan"),
            "addon_id": d.get("addon"),
            "billing_interval": d.get("billing_interval"),
        }


class QuoteCreateSerializer(serializers.Serializer):
    lead = serializers.UUIDField(required=False, allow_null=True)
    tenant = serializers.UUIDField(required=False, allow_null=True)
    client_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    client_email = serializers.EmailField(required=False, allow_blank=True, default="")
    client_address = serializers.CharField(required=False, allow_blank=True, default="")
    client_siret = serializers.CharField(max_length=14, required=False, allow_blank=True, default="")
    source = serializers.ChoiceField(choices=QuoteSource.choices, default=QuoteSource.MANUAL)
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices, required=False, allow_null=True)
    tax_rate = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, allow_null=True, min_value=0)
    valid_until = serializers.DateTimeField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    lines = QuoteLineCreateSerializer(many=True, required=False)


class PaymentMethodSerializer(serializers.Serializer):
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices, allow_null=True)


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class MandateDetailsSerializer(serializers.Serializer):
    siret = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    billing_address = serializers.CharField(required=False, allow_blank=True, default="")
    billing_service = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    use_chorus_pro = serializers.BooleanField(required=False, default=False)


class QuoteAcceptSerializer(serializers.Serializer):
    accepted_by_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    accepted_by_email = serializers.EmailField(required=False, allow_blank=True, default="")
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices, required=False, allow_null=True)
    mandate = MandateDetailsSerializer(required=False, allow_null=True)


class EmailRequestSerializer(serializers.Serializer):
    to = serializers.EmailField(required=False, allow_blank=True, default="")
    message = serializers.CharField(required=False, allow_blank=True, default="")
