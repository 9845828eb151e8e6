# civic_core/mandates/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from civic_core.mandates.models import MandateInvoice, MandateOrder

PRICING_FIELDS = [
    "plan",
    "plan_name",
    "plan_amount",
    "addons_amount",
    "addons_snapshot",
    "subtotal",
    "tax_rate",
    "tax_amount",
    "total_amount",
    "vat_notice",
]

CLIENT_FIELDS = ["client_name", "client_email", "client_address", "client_siret"]


class MandateOrderSerializer(serializers.ModelSerializer):
    quote_number = serializers.CharField(source="quote.quote_number", read_only=True)
    invoice_id = serializers.SerializerMethodField()

    class Meta:
        model = MandateOrder
        fields = [
            "id",
            "order_number",
            "quote",
            "quote_number",
            "tenant",
            "status",
            "billing_cycle",
            "duration_months",
            *CLIENT_FIELDS,
            "client_billing_service",
            "use_chorus_pro",
            *PRICING_FIELDS,
            "purchase_order_number",
            "engagement_number",
            "service_code",
            "bc_received_at",
            "validated_at",
            "validated_by_user_id",
            "invoiced_at",
            "rejected_at",
            "rejection_reason",
            "cancelled_at",
            "cancellation_reason",
            "invoice_id",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_invoice_id(self, obj: MandateOrder):
        invoice = getattr(obj, "invoice", None)
        return str(invoice.id) if invoice else None


class MandateInvoiceSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source="order.order_number", read_only=True)
    display_status = serializers.SerializerMethodField()
    is_overdue = serializers.SerializerMethodField()

    class Meta:
        model = MandateInvoice
        fields = [
            "id",
            "invoice_number",
            "order",
            "order_number",
            "tenant",
            "status",
            "display_status",
            "is_overdue",
            "period_start",
            "period_end",
            *CLIENT_FIELDS,
            *PRICING_FIELDS,
            "emitter_snapshot",
            "payment_terms",
            "due_date",
            "sent_at",
            "mandated_at",
            "paid_at",
            "payment_reference",
            "cancelled_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_display_status(self, obj: MandateInvoice) -> str:
        return obj.display_status()

    def get_is_overdue(self, obj: MandateInvoice) -> bool:
        return obj.is_overdue()


class PurchaseOrderSerializer(serializers.Serializer):
    purchase_order_number = serializers.CharField(max_length=64)
    engagement_number = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")
    service_code = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class MarkPaidSerializer(serializers.Serializer):
    payment_reference = serializers.CharField(max_length=128, required=False, allow_blank=True, default="")
    paid_at = serializers.DateTimeField(required=False, allow_null=True)


class InvoiceEmailSerializer(serializers.Serializer):
    to = serializers.EmailField(required=False, allow_blank=True, default="")
    message = serializers.CharField(required=False, allow_blank=True, default="")
