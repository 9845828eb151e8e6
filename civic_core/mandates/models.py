# civic_core/mandates/models.py
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from django.db import models
from django.utils import timezone

from civic_core.catalog.models import BillingInterval, Plan
from civic_core.common.models import ClientSnapshotModel
from civic_core.quotes.models import Quote
from civic_core.tenants.models import Tenant


class OrderStatus(models.TextChoices):
    PENDING_VALIDATION = "PENDING_VALIDATION", "Pending validation"
    PENDING_BC = "PENDING_BC", "Purchase order received"
    ACCEPTED = "ACCEPTED", "Accepted"
    INVOICED = "INVOICED", "Invoiced"
    REJECTED = "REJECTED", "Rejected"
    CANCELLED = "CANCELLED", "Cancelled"


CLOSED_ORDER_STATUSES = {OrderStatus.INVOICED, OrderStatus.REJECTED, OrderStatus.CANCELLED}


class InvoiceStatus(models.TextChoices):
    DRAFT = "DRAFT", "Draft"
    SENT = "SENT", "Sent"
    PAID = "PAID", "Paid"
    CANCELLED = "CANCELLED", "Cancelled"


# Display-only value, computed from SENT + due date. Never stored.
OVERDUE = "OVERDUE"


class PricingSnapshotModel(ClientSnapshotModel):
    """
    Amounts frozen at derivation time. Catalog price changes never reach
    an existing order or invoice.
    """
    plan = models.ForeignKey(Plan, on_delete=models.PROTECT, null=True, blank=True, related_name="+")
    plan_name = models.CharField(max_length=255, blank=True)
    plan_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    addons_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    # [{"id", "name", "quantity", "unit_price", "total_price"}]
    addons_snapshot = models.JSONField(default=list, blank=True)

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0.00"))
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    vat_notice = models.CharField(max_length=255, blank=True)

    class Meta:
        abstract = True


class MandateOrder(PricingSnapshotModel):
    """
    Purchase-order stage of the administrative mandate rail.
    Exactly one per accepted mandate quote; immutable once INVOICED.
    """
    order_number = models.CharField(max_length=32, unique=True)
    quote = models.OneToOneField(Quote, on_delete=models.PROTECT, related_name="mandate_order")
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="mandate_orders", null=True, blank=True)

    status = models.CharField(
        max_length=32,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING_VALIDATION,
        db_index=True,
    )
    billing_cycle = models.CharField(max_length=16, choices=BillingInterval.choices, default=BillingInterval.YEARLY)
    duration_months = models.PositiveSmallIntegerField(default=12)

    client_billing_service = models.CharField(max_length=255, blank=True)
    use_chorus_pro = models.BooleanField(default=False)

    # Client purchase-order (bon de commande) references
    purchase_order_number = models.CharField(max_length=64, blank=True)
    engagement_number = models.CharField(max_length=64, blank=True)
    service_code = models.CharField(max_length=64, blank=True)
    bc_received_at = models.DateTimeField(null=True, blank=True)

    validated_at = models.DateTimeField(null=True, blank=True)
    validated_by_user_id = models.IntegerField(null=True, blank=True)
    invoiced_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True)

    class Meta:
        db_table = "mandates_mandate_order"
        indexes = [
            models.Index(fields=["status", "created_at"]),
            models.Index(fields=["tenant", "created_at"]),
        ]

    def __str__(self) -> str:
        return self.order_number


class MandateInvoice(PricingSnapshotModel):
    """
    Invoice derived from an ACCEPTED order (exactly once).

    MANDATED is not a status: `mandated_at` records that the client confirmed
    the payment mandate while the invoice stays SENT.
    """
    invoice_number = models.CharField(max_length=32, unique=True)
    order = models.OneToOneField(MandateOrder, on_delete=models.PROTECT, related_name="invoice")
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="mandate_invoices", null=True, blank=True)

    status = models.CharField(max_length=16, choices=InvoiceStatus.choices, default=InvoiceStatus.DRAFT, db_index=True)

    period_start = models.DateField()
    period_end = models.DateField()

    emitter_snapshot = models.JSONField(default=dict, blank=True)
    payment_terms = models.CharField(max_length=128, blank=True)
    due_date = models.DateField(db_index=True)

    sent_at = models.DateTimeField(null=True, blank=True)
    mandated_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    payment_reference = models.CharField(max_length=128, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "mandates_mandate_invoice"
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
    def is_mandated(self) -> bool:
        return self.mandated_at is not None
