# civic_core/catalog/admin.py
from django.contrib import admin

from civic_core.catalog.models import Addon, Plan


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    list_display = ("name", "code", "monthly_price", "yearly_price", "is_active", "display_order")
    list_filter = ("is_active",)
    search_fields = ("name", "code")
    ordering = ("display_order", "name")


@admin.register(Addon)
class AddonAdmin(admin.ModelAdmin):
    list_display = ("name", "code", "default_monthly_price", "default_yearly_price", "is_active")
    list_filter = ("is_active",)
    search_fields = ("name", "code")
    ordering = ("name",)
