# civic_core/quotes/selectors.py
"""
Read side of quotes. Every read applies the lazy SENT -> EXPIRED transition first.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from django.db.models import Q, QuerySet

from civic_core.common.api.exceptions import EntityNotFound
from civic_core.quotes.models import Quote
from civic_core.quotes.services import QuoteService


def quote_qs() -> QuerySet[Quote]:
    return Quote.objects.select_related("lead", "tenant").prefetch_related("lines").order_by("-created_at")


def get_quote(quote_id: UUID, *, now: Optional[datetime] = None) -> Quote:
    QuoteService.expire_if_due(quote_id=quote_id, now=now)
    return quote_qs().get(id=quote_id)


def list_quotes(
    *,
    status: str | None = None,
    payment_method: str | None = None,
    lead_id: UUID | None = None,
    tenant_id: UUID | None = None,
    search: str | None = None,
    now: Optional[datetime] = None,
) -> QuerySet[Quote]:
    QuoteService.expire_overdue(now=now)

    qs = quote_qs()
    if status:
        qs = qs.filter(status=status)
    if payment_method:
        qs = qs.filter(payment_method=payment_method)
    if lead_id:
        qs = qs.filter(lead_id=lead_id)
    if tenant_id:
        qs = qs.filter(tenant_id=tenant_id)
    if search:
        qs = qs.filter(Q(quote_number__icontains=search) | Q(client_name__icontains=search))
    return qs


def get_quote_by_public_token(token: str, *, now: Optional[datetime] = None) -> Quote:
    quote_id = Quote.objects.filter(public_token=token).values_list("id", flat=True).first() if token else None
    if quote_id is None:
        raise EntityNotFound("Unknown or expired link.")
    return get_quote(quote_id, now=now)
