# civic_core/invoices/api/serializers.py
from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from civic_core.invoices.models import Invoice, InvoiceLineItem, Payment, PaymentChannel, PaymentStatus


class InvoiceLineItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = InvoiceLineItem
        fields = ["id", "position", "description", "quantity", "unit_price", "total", "plan", "addon", "billing_interval"]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            "id",
            "invoice",
            "amount",
            "method",
            "status",
            "reference",
            "notes",
            "completed_at",
            "recorded_by_user_id",
            "created_at",
        ]
        read_only_fields = fields


class InvoiceSerializer(serializers.ModelSerializer):
    quote_number = serializers.CharField(source="quote.quote_number", read_only=True)
    lines = InvoiceLineItemSerializer(many=True, read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)
    amount_paid = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    balance_due = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    display_status = serializers.SerializerMethodField()

    class Meta:
        model = Invoice
        fields = [
            "id",
            "invoice_number",
            "quote",
            "quote_number",
            "tenant",
            "status",
            "display_status",
            "client_name",
            "client_email",
            "client_address",
            "client_siret",
            "lines",
            "subtotal",
            "tax_rate",
            "tax_amount",
            "total_amount",
            "vat_notice",
            "amount_paid",
            "balance_due",
            "payments",
            "emitter_snapshot",
            "payment_terms",
            "due_date",
            "notes",
            "sent_at",
            "paid_at",
            "cancelled_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_display_status(self, obj: Invoice) -> str:
        return obj.display_status()


class InvoiceCreateSerializer(serializers.Serializer):
    quote_id = serializers.UUIDField()


class RecordPaymentSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"))
    method = serializers.ChoiceField(choices=PaymentChannel.choices, default=PaymentChannel.BANK_TRANSFER)
    status = serializers.ChoiceField(choices=PaymentStatus.choices, default=PaymentStatus.COMPLETED)
    reference = serializers.CharField(max_length=128, required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")
