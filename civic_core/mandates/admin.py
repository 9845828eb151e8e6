# civic_core/mandates/admin.py
from django.contrib import admin

from civic_core.mandates.models import MandateInvoice, MandateOrder


@admin.register(MandateOrder)
class MandateOrderAdmin(admin.ModelAdmin):
    list_display = ("order_number", "client_name", "status", "total_amount", "purchase_order_number", "created_at")
    list_filter = ("status", "use_chorus_pro")
    search_fields = ("order_number", "client_name", "purchase_order_number", "engagement_number")
    ordering = ("-created_at",)
    readonly_fields = (
        "id", "order_number", "quote", "status", "plan_amount", "addons_amount", "addons_snapshot",
        "subtotal", "tax_rate", "tax_amount", "total_amount", "created_at", "updated_at",
    )


@admin.register(MandateInvoice)
class MandateInvoiceAdmin(admin.ModelAdmin):
    list_display = ("invoice_number", "client_name", "status", "total_amount", "due_date", "mandated_at", "paid_at")
    list_filter = ("status",)
    search_fields = ("invoice_number", "client_name", "payment_reference")
    ordering = ("-created_at",)
    readonly_fields = (
        "id", "invoice_number", "order", "status", "period_start", "period_end", "emitter_snapshot",
        "subtotal", "tax_rate", "tax_amount", "total_amount", "created_at", "updated_at",
    )
