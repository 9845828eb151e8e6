# civic_core/mandates/selectors.py
from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from django.db.models import Q, QuerySet
from django.utils import timezone

from civic_core.mandates.models import OVERDUE, InvoiceStatus, MandateInvoice, MandateOrder


def orders_filtered(
    *,
    status: str | None = None,
    tenant_id: UUID | None = None,
    search: str | None = None,
) -> QuerySet[MandateOrder]:
    qs = MandateOrder.objects.select_related("quote", "tenant").order_by("-created_at")
    if status:
        qs = qs.filter(status=status)
    if tenant_id:
        qs = qs.filter(tenant_id=tenant_id)
    if search:
        qs = qs.filter(
            Q(order_number__icontains=search)
            | Q(client_name__icontains=search)
            | Q(purchase_order_number__icontains=search)
        )
    return qs


def invoices_filtered(
    *,
    status: str | None = None,
    tenant_id: UUID | None = None,
    today: Optional[date] = None,
) -> QuerySet[MandateInvoice]:
    """`status=OVERDUE` selects SENT invoices past their due date."""
    qs = MandateInvoice.objects.select_related("order", "tenant").order_by("-created_at")
    if tenant_id:
        qs = qs.filter(tenant_id=tenant_id)
    if status == OVERDUE:
        qs = qs.filter(status=InvoiceStatus.SENT, due_date__lt=today or timezone.localdate())
    elif status:
        qs = qs.filter(status=status)
    return qs
