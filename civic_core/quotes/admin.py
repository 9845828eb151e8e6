# civic_core/quotes/admin.py
from django.contrib import admin

from civic_core.quotes.models import Quote, QuoteLineItem


class QuoteLineItemInline(admin.TabularInline):
    model = QuoteLineItem
    extra = 0
    fields = ("position", "description", "quantity", "unit_price", "total", "plan", "addon", "billing_interval")
    readonly_fields = fields
    can_delete = False


@admin.register(Quote)
class QuoteAdmin(admin.ModelAdmin):
    # status changes go through QuoteService; admin is for inspection
    list_display = (
        "quote_number", "client_name", "status", "payment_method", "administrative_mandate_status",
        "total", "valid_until", "created_at",
    )
    list_filter = ("status", "payment_method", "administrative_mandate_status", "source")
    search_fields = ("quote_number", "client_name", "client_email")
    ordering = ("-created_at",)
    readonly_fields = (
        "id", "quote_number", "status", "subtotal", "tax_amount", "total", "public_token",
        "sent_at", "accepted_at", "rejected_at", "expired_at", "created_at", "updated_at",
    )
    inlines = [QuoteLineItemInline]
