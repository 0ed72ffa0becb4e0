"""
Quote totals engine.

Tax after discount is re-derived at the blended rate of the original lines
(``subtotal_tax / subtotal_ht``) instead of re-allocating the discount per
tax rate. Mixed-rate quotes keep that behavior.
"""
from decimal import Decimal
from typing import Iterable, Tuple

from quotedesk.exceptions import ArithmeticInvariantError
from quotedesk.services.pricing_types import QuoteTotals
from quotedesk.utils.money import to_decimal, round2, clamp, percent_of, ZERO


def compute_line_totals(quantity, unit_price_ht, tax_rate) -> Tuple[Decimal, Decimal, Decimal]:
    """(line_total_ht, line_tax_amount, line_total_ttc) for one line; tax_rate in percent."""
    total_ht = round2(to_decimal(quantity) * to_decimal(unit_price_ht))
    tax = round2(percent_of(total_ht, tax_rate))
    return total_ht, tax, round2(total_ht + tax)


def item_values(items: Iterable):
    """(quantity, unit_price_ht, tax_rate) of persisted quote/order items."""
    return [(i.quantity, i.unit_price_ht_snapshot, i.tax_rate_snapshot) for i in items]


def line_values(lines: Iterable):
    """(quantity, unit_price_ht, tax_rate) of pricing lines."""
    return [(l.quantity, l.unit_price_ht, l.tax_rate) for l in lines]


def _sum_values(values) -> Tuple[Decimal, Decimal]:
    subtotal_ht = ZERO
    subtotal_tax = ZERO
    for quantity, unit_price_ht, tax_rate in values:
        total_ht, tax, _ = compute_line_totals(quantity, unit_price_ht, tax_rate)
        subtotal_ht += total_ht
        subtotal_tax += tax
    return subtotal_ht, subtotal_tax


def totals_from_values(values, discount_total=None) -> QuoteTotals:
    """
    Totals from (quantity, unit_price_ht, tax_rate) triples.

    Without a discount: plain sums. With one: the discount is clamped to
    [0, subtotal_ht] and tax is recomputed on the net HT at the blended rate.
    """
    subtotal_ht, subtotal_tax = _sum_values(values)

    if discount_total is None:
        return QuoteTotals(
            subtotal_ht=subtotal_ht,
            discount_total=ZERO,
            net_subtotal_ht=subtotal_ht,
            total_tax=subtotal_tax,
            total_ttc=round2(subtotal_ht + subtotal_tax),
        )

    discount = round2(clamp(discount_total, ZERO, subtotal_ht))
    effective_rate = subtotal_tax / subtotal_ht if subtotal_ht > 0 else ZERO
    net = round2(subtotal_ht - discount)
    tax = round2(net * effective_rate)
    ttc = round2(net + tax)

    if net < 0 or tax < 0 or ttc < 0:
        raise ArithmeticInvariantError(
            f"Negative totals (net={net}, tax={tax}, ttc={ttc})",
            payload={'net': str(net), 'tax': str(tax), 'ttc': str(ttc)}
        )

    return QuoteTotals(
        subtotal_ht=subtotal_ht,
        discount_total=discount,
        net_subtotal_ht=net,
        total_tax=tax,
        total_ttc=ttc,
    )


def calculate_totals(items: Iterable) -> QuoteTotals:
    """Sum of line HT / tax / TTC, no discount."""
    return totals_from_values(item_values(items))


def calculate_totals_with_discount(items: Iterable, discount_total) -> QuoteTotals:
    """
    Totals with a quote-level discount taken off the HT base.

    Always recomputed from the items, so calling it again with the same
    inputs gives the same totals.
    """
    return totals_from_values(item_values(items), to_decimal(discount_total))


def refresh_line_totals(items: Iterable) -> None:
    """Recompute the stored line amounts from the frozen snapshots."""
    for item in items:
        total_ht, tax, ttc = compute_line_totals(
            item.quantity, item.unit_price_ht_snapshot, item.tax_rate_snapshot
        )
        item.line_total_ht = total_ht
        item.line_tax_amount = tax
        item.line_total_ttc = ttc


def apply_totals(quote, totals: QuoteTotals) -> None:
    """Store totals on the quote (no flush, no commit)."""
    quote.subtotal_ht = totals.subtotal_ht
    quote.discount_total = totals.discount_total
    quote.total_tax = totals.total_tax
    quote.total_ttc = totals.total_ttc
