# civic_core/documents/totals.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from rest_framework.exceptions import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    vat_applicable: bool
    vat_notice: str = ""


def line_total(quantity: int, unit_price) -> Decimal:
    if quantity is None or int(quantity) < 1:
        raise ValidationError({"quantity": "Quantity must be >= 1."})
    price = money(unit_price)
    if price < 0:
        raise ValidationError({"unit_price": "Unit price must be >= 0."})
    return money(int(quantity) * price)


def compute_totals(
    line_totals: Iterable,
    tax_rate,
    *,
    vat_applicable: bool = True,
    exemption_notice: str = "",
) -> DocumentTotals:
    """
    subtotal = sum(line totals)
    tax      = subtotal * rate / 100, half-up to the cent (0 when VAT does not apply)
    total    = subtotal + tax
    """
    rate = money(tax_rate)
    if rate < 0:
        raise ValidationError({"tax_rate": "Tax rate must be >= 0."})

    subtotal = money(sum((money(t) for t in line_totals), ZERO))

    if not vat_applicable:
        return DocumentTotals(
            subtotal=subtotal,
            tax_rate=ZERO,
            tax_amount=ZERO,
            total=subtotal,
            vat_applicable=False,
            vat_notice=exemption_notice,
        )

    tax_amount = money(subtotal * rate / Decimal("100"))
    return DocumentTotals(
        subtotal=subtotal,
        tax_rate=rate,
        tax_amount=tax_amount,
        total=money(subtotal + tax_amount),
        vat_applicable=True,
    )
