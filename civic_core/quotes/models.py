# civic_core/quotes/models.py
from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.utils import timezone

from civic_core.catalog.models import Addon, BillingInterval, Plan
from civic_core.common.models import ClientSnapshotModel, UUIDModel
from civic_core.leads.models import Lead
from civic_core.tenants.models import Tenant


class QuoteStatus(models.TextChoices):
    DRAFT = "DRAFT", "Draft"
    SENT = "SENT", "Sent"
    ACCEPTED = "ACCEPTED", "Accepted"
    REJECTED = "REJECTED", "Rejected"
    EXPIRED = "EXPIRED", "Expired"


class PaymentMethod(models.TextChoices):
    CARD = "CARD", "Card"
    ADMINISTRATIVE_MANDATE = "ADMINISTRATIVE_MANDATE", "Administrative mandate"


class MandateStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    APPROVED = "APPROVED", "Approved"
    REJECTED = "REJECTED", "Rejected"


class QuoteSource(models.TextChoices):
    PROSPECT_CONTACT = "PROSPECT_CONTACT", "Prospect contact"
    TRIAL_CONVERSION = "TRIAL_CONVERSION", "Trial conversion"
    MANUAL = "MANUAL", "Manual"


class Quote(ClientSnapshotModel):
    """
    Commercial proposal.

    - Lines and totals are mutable only while DRAFT (enforced in services).
    - administrative_mandate_status is non-null iff payment_method is ADMINISTRATIVE_MANDATE.
    - EXPIRED is applied lazily on read once valid_until has passed.
    """
    quote_number = models.CharField(max_length=32, unique=True)
    status = models.CharField(max_length=16, choices=QuoteStatus.choices, default=QuoteStatus.DRAFT, db_index=True)
    source = models.CharField(max_length=32, choices=QuoteSource.choices, default=QuoteSource.MANUAL)

    lead = models.ForeignKey(Lead, on_delete=models.PROTECT, related_name="quotes", null=True, blank=True)
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="quotes", null=True, blank=True)

    payment_method = models.CharField(max_length=32, choices=PaymentMethod.choices, null=True, blank=True)
    administrative_mandate_status = models.CharField(
        max_length=16,
        choices=MandateStatus.choices,
        null=True,
        blank=True,
    )
    mandate_decided_at = models.DateTimeField(null=True, blank=True)

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("20.00"))
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    vat_applicable = models.BooleanField(default=True)
    vat_notice = models.CharField(max_length=255, blank=True)

    valid_until = models.DateTimeField()
    notes = models.TextField(blank=True)

    public_token = models.CharField(max_length=64, unique=True, null=True, blank=True)

    sent_at = models.DateTimeField(null=True, blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    accepted_by_name = models.CharField(max_length=255, blank=True)
    accepted_by_email = models.EmailField(blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True)
    expired_at = models.DateTimeField(null=True, blank=True)

    # Public-sector billing details given at acceptance (mandate rail)
    mandate_siret = models.CharField(max_length=14, blank=True)
    mandate_billing_address = models.TextField(blank=True)
    mandate_billing_service = models.CharField(max_length=255, blank=True)
    mandate_use_chorus_pro = models.BooleanField(default=False)

    created_by_user_id = models.IntegerField(null=True, blank=True)

    class Meta:
        db_table = "quotes_quote"
        indexes = [
            models.Index(fields=["status", "valid_until"]),
            models.Index(fields=["tenant", "created_at"]),
            models.Index(fields=["lead", "created_at"]),
        ]

    def __str__(self) -> str:
        return self.quote_number

    @property
    def is_mandate(self) -> bool:
        return self.payment_method == PaymentMethod.ADMINISTRATIVE_MANDATE

    @property
    def is_editable(self) -> bool:
        return self.status == QuoteStatus.DRAFT

    def is_past_validity(self, now=None) -> bool:
        return (now or timezone.now()) > self.valid_until


class QuoteLineItem(UUIDModel):
    """
    One line of a quote. total = quantity * unit_price, snapshotted.
    plan/addon + billing_interval are set for catalog lines, null for free-text lines.
    """
    quote = models.ForeignKey(Quote, on_delete=models.CASCADE, related_name="lines")
    position = models.PositiveIntegerField(default=0)

    description = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    plan = models.ForeignKey(Plan, on_delete=models.PROTECT, related_name="quote_lines", null=True, blank=True)
    addon = models.ForeignKey(Addon, on_delete=models.PROTECT, related_name="quote_lines", null=True, blank=True)
    billing_interval = models.CharField(max_length=16, choices=BillingInterval.choices, null=True, blank=True)

    class Meta:
        db_table = "quotes_quote_line_item"
        ordering = ("position", "created_at")
        indexes = [
            models.Index(fields=["quote", "position"]),
        ]

    @property
    def catalog_item(self):
        return self.plan or self.addon
