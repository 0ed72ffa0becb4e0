"""
Unit tests for the quote totals engine.
"""

from decimal import Decimal
from types import SimpleNamespace

from quotedesk.services.quote_totals import (
    compute_line_totals, calculate_totals, calculate_totals_with_discount, apply_totals
)


def item(quantity, price, tax_rate):
    return SimpleNamespace(
        quantity=Decimal(str(quantity)),
        unit_price_ht_snapshot=Decimal(str(price)),
        tax_rate_snapshot=Decimal(str(tax_rate)),
    )


class TestLineTotals:
    """Tests for compute_line_totals."""

    def test_line_amounts(self):
        assert compute_line_totals(Decimal('3'), Decimal('4.50'), Decimal('5.5')) == (
            Decimal('13.50'), Decimal('0.74'), Decimal('14.24')
        )


class TestSimpleTotals:
    """Tests for calculate_totals (no discount)."""

    def test_sums_lines(self):
        totals = calculate_totals([item(2, '100.00', 20), item(1, '50.00', 10)])
        assert totals.subtotal_ht == Decimal('250.00')
        assert totals.total_tax == Decimal('45.00')
        assert totals.total_ttc == Decimal('295.00')
        assert totals.discount_total == Decimal('0')


class TestDiscountAwareTotals:
    """Tests for calculate_totals_with_discount."""

    def test_tax_follows_the_discount(self):
        totals = calculate_totals_with_discount([item(2, '100.00', 20)], Decimal('20.00'))
        assert totals.net_subtotal_ht == Decimal('180.00')
        assert totals.total_tax == Decimal('36.00')
        assert totals.total_ttc == Decimal('216.00')

    def test_blended_rate_on_mixed_tax_lines(self):
        # 100 @20% + 100 @0% -> blended 10%
        totals = calculate_totals_with_discount([item(1, '100', 20), item(1, '100', 0)], Decimal('50'))
        assert totals.net_subtotal_ht == Decimal('150.00')
        assert totals.total_tax == Decimal('15.00')
        assert totals.total_ttc == Decimal('165.00')

    def test_discount_is_clamped_to_subtotal(self):
        totals = calculate_totals_with_discount([item(1, '80.00', 20)], Decimal('500'))
        assert totals.discount_total == Decimal('80.00')
        assert totals.total_ttc == Decimal('0.00')

    def test_negative_discount_is_clamped_to_zero(self):
        totals = calculate_totals_with_discount([item(1, '80.00', 20)], Decimal('-5'))
        assert totals.discount_total == Decimal('0.00')
        assert totals.total_ttc == Decimal('96.00')

    def test_empty_quote(self):
        totals = calculate_totals_with_discount([], Decimal('10'))
        assert totals.total_ttc == Decimal('0.00')

    def test_idempotent(self):
        items = [item(3, '33.33', 20), item(7, '1.07', 5.5), item(1, '0.99', 10)]
        first = calculate_totals_with_discount(items, Decimal('12.34'))
        second = calculate_totals_with_discount(items, first.discount_total)
        assert first == second

    def test_apply_totals_sets_quote_fields(self):
        quote = SimpleNamespace()
        apply_totals(quote, calculate_totals_with_discount([item(2, '100.00', 20)], Decimal('20')))
        assert (quote.subtotal_ht, quote.discount_total, quote.total_tax, quote.total_ttc) == (
            Decimal('200.00'), Decimal('20.00'), Decimal('36.00'), Decimal('216.00')
        )
