"""
Discount calculator - turns the stacked promotions into money.

Each applied promotion works on the *remaining* HT base of its target
lines, so promotions applied later never discount what an earlier one
already took. Amounts are spread back over the lines (floor to the cent,
leftover cents distributed by largest remainder), which gives the
per-line ``discount_amount`` stored on quote items.
"""
from decimal import Decimal
from typing import Dict, List, Sequence, Tuple
import logging

from quotedesk.models import ActionType
from quotedesk.exceptions import ArithmeticInvariantError
from quotedesk.services.pricing_types import (
    PricingLine, EligibilityResult, AppliedPromotion,
    PercentDiscount, FixedDiscount, BogoDiscount, DiscountBreakdown
)
from quotedesk.services.promotion_eligibility import lines_in_scope, bogo_get_lines, bogo_free_units
from quotedesk.utils.money import (
    to_decimal, round2, floor2, clamp_non_negative, percent_of, CENT, ZERO, HUNDRED
)

logger = logging.getLogger(__name__)


def allocate_amount(amount: Decimal, weights: Dict[int, Decimal],
                    capacity: Dict[int, Decimal]) -> Dict[int, Decimal]:
    """
    Split ``amount`` over lines proportionally to ``weights``.

    Every share is a whole number of cents and never exceeds the line's
    ``capacity``. Cents left after flooring go to the largest remainders
    first (ties by line index), so the result is deterministic.
    """
    amount = round2(amount)
    shares = {index: ZERO for index in weights}
    total_weight = sum(weights.values(), ZERO)
    if amount <= 0 or total_weight <= 0:
        return shares

    remainders = {}
    for index, weight in weights.items():
        exact = amount * weight / total_weight
        share = min(floor2(exact), capacity[index])
        shares[index] = share
        remainders[index] = exact - share

    leftover = amount - sum(shares.values(), ZERO)
    order = sorted(weights, key=lambda i: (-remainders[i], i))
    while leftover > 0:
        progressed = False
        for index in order:
            if leftover <= 0:
                break
            if shares[index] + CENT <= capacity[index]:
                shares[index] += CENT
                leftover -= CENT
                progressed = True
        if not progressed:
            raise ArithmeticInvariantError(
                f"Cannot allocate {amount}: {leftover} left over line capacity",
                payload={'amount': str(amount), 'leftover': str(leftover)}
            )
    return shares


def _bogo_line_values(action, scoped: Sequence[PricingLine]) -> Tuple[Dict[int, Decimal], int]:
    """Discount value per "get" line and the number of discounted units (cheapest units first)."""
    get_lines = bogo_get_lines(action, scoped)
    free_units = bogo_free_units(action, scoped)

    if action.action_type == ActionType.BOGO_FREE.value:
        rate = HUNDRED
    else:
        rate = to_decimal(action.bogo_discount_value)

    values = {}
    left = Decimal(free_units)
    for line in sorted(get_lines, key=lambda l: (l.unit_price_ht, l.index)):
        if left <= 0:
            break
        taken = min(left, line.quantity)
        values[line.index] = percent_of(taken * line.unit_price_ht, rate)
        left -= taken
    return values, free_units


def _candidate(action, scoped: Sequence[PricingLine], remaining: Dict[int, Decimal]):
    """(candidate amount, allocation weights, free units) for one action."""
    if action.is_bogo:
        values, free_units = _bogo_line_values(action, scoped)
        weights = {i: v for i, v in values.items() if v > 0 and remaining[i] > 0}
        return sum(weights.values(), ZERO), weights, free_units

    weights = {line.index: remaining[line.index] for line in scoped if remaining[line.index] > 0}
    base = sum(weights.values(), ZERO)
    value = to_decimal(action.value)

    if action.action_type == ActionType.PERCENT.value:
        return percent_of(base, value), weights, 0
    if action.action_type == ActionType.FIXED.value:
        return min(value, base), weights, 0

    logger.warning(f"[DISCOUNT] Unknown action type {action.action_type!r} on promotion {action.promotion_id}")
    return ZERO, weights, 0


def _record(result: EligibilityResult, action, amount, lines, free_units) -> AppliedPromotion:
    promotion = result.promotion
    common = dict(
        promotion_id=promotion.id,
        name=promotion.name,
        code_id=result.code_id,
        amount_discounted=amount,
        lines=lines,
    )
    if action.action_type == ActionType.PERCENT.value:
        return PercentDiscount(percent=to_decimal(action.value), **common)
    if action.action_type == ActionType.FIXED.value:
        return FixedDiscount(fixed_amount=to_decimal(action.value), **common)
    return BogoDiscount(
        bogo_type=action.action_type,
        buy_sku=action.buy_sku,
        buy_qty=action.buy_qty or 1,
        get_sku=action.get_sku,
        get_qty=action.get_qty or 1,
        discount_percent=(
            HUNDRED if action.action_type == ActionType.BOGO_FREE.value
            else to_decimal(action.bogo_discount_value)
        ),
        free_units=free_units,
        **common
    )


def calculate_discounts(applied: List[EligibilityResult], lines: Sequence[PricingLine]) -> DiscountBreakdown:
    """
    Compute the discount of every applied promotion, in stacking order.

    ``amount = round2(min(candidate, max_discount_amount, remaining base))``.
    The result always satisfies ``0 <= discount_total <= subtotal_ht``;
    anything else is a bug and raises ArithmeticInvariantError.
    """
    remaining = {line.index: line.line_total_ht for line in lines}
    line_discounts = {line.index: ZERO for line in lines}
    records = []

    for result in applied:
        action = result.promotion.primary_action
        scoped = lines_in_scope(result.promotion, lines)

        candidate, weights, free_units = _candidate(action, scoped, remaining)
        base = sum((remaining[i] for i in weights), ZERO)

        amount = clamp_non_negative(candidate)
        if action.max_discount_amount is not None:
            amount = min(amount, to_decimal(action.max_discount_amount))
        amount = round2(min(amount, base))

        shares = allocate_amount(amount, weights, remaining)
        for index, share in shares.items():
            remaining[index] -= share
            line_discounts[index] += share

        line_shares = tuple((index, share) for index, share in sorted(shares.items()) if share > 0)
        records.append(_record(result, action, amount, line_shares, free_units))
        logger.debug(f"[DISCOUNT] Promotion {result.promotion.id}: candidate {candidate}, applied {amount}")

    discount_total = sum((r.amount_discounted for r in records), ZERO)
    _check_invariants(lines, discount_total, line_discounts)

    return DiscountBreakdown(applied=records, discount_total=discount_total, line_discounts=line_discounts)


def _check_invariants(lines, discount_total, line_discounts):
    subtotal = round2(sum((line.line_total_ht for line in lines), ZERO))
    if discount_total < 0 or discount_total > subtotal:
        raise ArithmeticInvariantError(
            f"Discount {discount_total} outside [0, {subtotal}]",
            payload={'discount_total': str(discount_total), 'subtotal_ht': str(subtotal)}
        )
    if sum(line_discounts.values(), ZERO) != discount_total:
        raise ArithmeticInvariantError(
            f"Line discounts do not add up to {discount_total}",
            payload={'discount_total': str(discount_total)}
        )
    for line in lines:
        if line_discounts[line.index] > line.line_total_ht:
            raise ArithmeticInvariantError(
                f"Line {line.index} discounted above its total",
                payload={'line': line.index, 'discount': str(line_discounts[line.index])}
            )
