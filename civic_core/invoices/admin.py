from django.contrib import admin

from civic_core.invoices.models import Invoice, InvoiceLineItem, Payment


class InvoiceLineItemInline(admin.TabularInline):
    model = InvoiceLineItem
    extra = 0
    can_delete = False
    readonly_fields = ("position", "description", "quantity", "unit_price", "total", "plan", "addon", "billing_interval")


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    can_delete = False
    readonly_fields = ("amount", "method", "status", "reference", "completed_at", "recorded_by_user_id")


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ("invoice_number", "client_name", "status", "total_amount", "due_date", "paid_at")
    list_filter = ("status",)
    search_fields = ("invoice_number", "client_name")
    ordering = ("-created_at",)
    inlines = (InvoiceLineItemInline, PaymentInline)
    readonly_fields = (
        "id", "invoice_number", "quote", "status", "subtotal", "tax_rate", "tax_amount", "total_amount",
        "emitter_snapshot", "created_at", "updated_at",
    )
