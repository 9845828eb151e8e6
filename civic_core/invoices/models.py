# civic_core/invoices/models.py
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from django.db import models
from django.db.models import Sum
from django.utils import timezone

from civic_core.catalog.models import Addon, BillingInterval, Plan
from civic_core.common.models import ClientSnapshotModel, UUIDModel
from civic_core.mandates.models import OVERDUE, InvoiceStatus
from civic_core.quotes.models import Quote
from civic_core.tenants.models import Tenant


class PaymentChannel(models.TextChoices):
    CARD = "CARD", "Card"
    BANK_TRANSFER = "BANK_TRANSFER", "Bank transfer"
    CHECK = "CHECK", "Check"


class PaymentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    COMPLETED = "COMPLETED", "Completed"
    FAILED = "FAILED", "Failed"
    REFUNDED = "REFUNDED", "Refunded"


class Invoice(ClientSnapshotModel):
    """
    Line-item invoice derived once from an ACCEPTED card quote.

    Lines are copied from the quote at derivation and never edited afterwards.
    Shares the FA counter with mandate invoices. OVERDUE is computed, see
    display_status().
    """
    invoice_number = models.CharField(max_length=32, unique=True)
    quote = models.OneToOneField(Quote, on_delete=models.PROTECT, related_name="invoice")
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="invoices", null=True, blank=True)

    status = models.CharField(max_length=16, choices=InvoiceStatus.choices, default=InvoiceStatus.DRAFT, db_index=True)

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0.00"))
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    vat_notice = models.CharField(max_length=255, blank=True)

    emitter_snapshot = models.JSONField(default=dict, blank=True)
    payment_terms = models.CharField(max_length=128, blank=True)
    due_date = models.DateField(db_index=True)
    notes = models.TextField(blank=True)

    sent_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "invoices_invoice"
        indexes = [
            models.Index(fields=["status", "due_date"]),
            models.Index(fields=["tenant", "created_at"]),
        ]

    def __str__(self) -> str:
        return self.invoice_number

    def is_overdue(self, today: Optional[date] = None) -> bool:
        today = today or timezone.localdate()
        return self.status == InvoiceStatus.SENT and self.due_date < today

    def display_status(self, today: Optional[date] = None) -> str:
        return OVERDUE if self.is_overdue(today) else self.status

    @property
    def amount_paid(self) -> Decimal:
        paid = self.payments.filter(status=PaymentStatus.COMPLETED).aggregate(s=Sum("amount"))["s"]
        return paid or Decimal("0.00")

    @property
    def balance_due(self) -> Decimal:
        return self.total_amount - self.amount_paid


class InvoiceLineItem(UUIDModel):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="lines")
    position = models.PositiveIntegerField(default=0)

    description = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    plan = models.ForeignKey(Plan, on_delete=models.PROTECT, related_name="+", null=True, blank=True)
    addon = models.ForeignKey(Addon, on_delete=models.PROTECT, related_name="+", null=True, blank=True)
    billing_interval = models.CharField(max_length=16, choices=BillingInterval.choices, null=True, blank=True)

    class Meta:
        db_table = "invoices_invoice_line_item"
        ordering = ("position", "created_at")


class Payment(UUIDModel):
    """One settlement attempt against an invoice. Only COMPLETED rows count towards the balance."""
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name="payments")
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="payments", null=True, blank=True)

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    method = models.CharField(max_length=16, choices=PaymentChannel.choices)
    status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.COMPLETED)
    reference = models.CharField(max_length=128, blank=True)
    notes = models.TextField(blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    recorded_by_user_id = models.IntegerField(null=True, blank=True)

    class Meta:
        db_table = "invoices_payment"
        ordering = ("created_at",)
        indexes = [
            models.Index(fields=["invoice", "status"]),
        ]

    def __str__(self) -> str:
        return f"{self.amount} {self.method} ({self.status})"
