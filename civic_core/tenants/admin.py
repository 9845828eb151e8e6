from django.contrib import admin

from civic_core.tenants.models import Tenant


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ("name", "slug", "tenant_type", "lifecycle_status", "billing_status", "trial_ends_at", "created_at")
    list_filter = ("tenant_type", "lifecycle_status", "billing_status", "created_at")
    search_fields = ("name", "slug", "contact_email", "siret")
    ordering = ("-created_at",)
    readonly_fields = ("id", "created_at", "updated_at", "archived_at")

    fieldsets = (
        (None, {"fields": ("id", "name", "slug", "tenant_type")}),
        ("Contact", {"fields": ("contact_name", "contact_email", "siret", "address")}),
        ("Billing", {"fields": ("lifecycle_status", "billing_status", "trial_ends_at", "plan", "billing_interval")}),
        ("Metadata", {"fields": ("metadata",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at", "archived_at")}),
    )
