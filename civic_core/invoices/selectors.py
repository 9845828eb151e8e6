# civic_core/invoices/selectors.py
from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from django.db.models import Q, QuerySet
from django.utils import timezone

from civic_core.invoices.models import Invoice
from civic_core.mandates.models import OVERDUE, InvoiceStatus


def invoices_filtered(
    *,
    status: str | None = None,
    tenant_id: UUID | None = None,
    search: str | None = None,
    today: Optional[date] = None,
) -> QuerySet[Invoice]:
    """`status=OVERDUE` selects SENT invoices past their due date."""
    qs = (
        Invoice.objects.select_related("quote", "tenant")
        .prefetch_related("lines", "payments")
        .order_by("-created_at")
    )
    if tenant_id:
        qs = qs.filter(tenant_id=tenant_id)
    if status == OVERDUE:
        qs = qs.filter(status=InvoiceStatus.SENT, due_date__lt=today or timezone.localdate())
    elif status:
        qs = qs.filter(status=status)
    if search:
        qs = qs.filter(Q(invoice_number__icontains=search) | Q(client_name__icontains=search))
    return qs
