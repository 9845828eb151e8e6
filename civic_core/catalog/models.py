# civic_core/catalog/models.py
from __future__ import annotations

from decimal import Decimal

from django.db import models

from civic_core.common.models import UUIDModel


class BillingInterval(models.TextChoices):
    MONTHLY = "MONTHLY", "Mensuel"
    YEARLY = "YEARLY", "Annuel"


class Plan(UUIDModel):
    code = models.SlugField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)

    monthly_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    yearly_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    is_active = models.BooleanField(default=True, db_index=True)
    display_order = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "catalog_plan"
        ordering = ("display_order", "name")

    def __str__(self) -> str:
        return self.name


class Addon(UUIDModel):
    code = models.SlugField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)

    default_monthly_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    default_yearly_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    is_active = models.BooleanField(default=True, db_index=True)

    class Meta:
        db_table = "catalog_addon"
        ordering = ("name",)

    def __str__(self) -> str:
        return self.name
