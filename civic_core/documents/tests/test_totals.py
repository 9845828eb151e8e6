# civic_core/documents/tests/test_totals.py
from decimal import Decimal

import pytest
from rest_framework.exceptions import ValidationError

from civic_core.documents.totals import compute_totals, line_total, money


def test_quote_totals_with_standard_vat():
    lines = [line_total(2, Decimal("50.00")), line_total(1, Decimal("100.00"))]

    totals = compute_totals(lines, Decimal("20.00"))

    assert totals.subtotal == Decimal("200.00")
    assert totals.tax_amount == Decimal("40.00")
    assert totals.total == Decimal("240.00")
    assert totals.vat_applicable is True
    assert totals.vat_notice == ""


def test_tax_is_rounded_half_up_to_the_cent():
    # 10.05 * 5.5% = 0.55275
    totals = compute_totals([Decimal("10.05")], Decimal("5.5"))
    assert totals.tax_amount == Decimal("0.55")

    # 0.25 * 10% = 0.025 -> 0.03 (not banker's 0.02)
    totals = compute_totals([Decimal("0.25")], Decimal("10"))
    assert totals.tax_amount == Decimal("0.03")
    assert totals.total == Decimal("0.28")


def test_vat_not_applicable_zeroes_tax_and_carries_notice():
    totals = compute_totals(
        [Decimal("99.99")],
        Decimal("20.00"),
        vat_applicable=False,
        exemption_notice="TVA non applicable, art. 293 B du CGI",
    )

    assert totals.tax_rate == Decimal("0.00")
    assert totals.tax_amount == Decimal("0.00")
    assert totals.total == Decimal("99.99")
    assert totals.vat_notice == "TVA non applicable, art. 293 B du CGI"


def test_empty_document_totals_are_zero():
    totals = compute_totals([], Decimal("20.00"))
    assert totals.subtotal == Decimal("0.00")
    assert totals.total == Decimal("0.00")


def test_money_quantizes_strings_and_floats():
    assert money("12.345") == Decimal("12.35")
    assert money(1.1) == Decimal("1.10")


@pytest.mark.parametrize("quantity", [0, -1])
def test_line_total_rejects_non_positive_quantity(quantity):
    with pytest.raises(ValidationError):
        line_total(quantity, Decimal("10.00"))


def test_line_total_rejects_negative_price():
    with pytest.raises(ValidationError):
        line_total(1, Decimal("-0.01"))


def test_negative_tax_rate_is_rejected():
    with pytest.raises(ValidationError):
        compute_totals([Decimal("10.00")], Decimal("-1"))
