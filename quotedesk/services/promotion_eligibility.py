"""
Eligibility evaluator - does one structurally active promotion apply to a context?

Pure reads: the only database access is the code lookup and the ledger
counts used for the limit check.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from quotedesk.models import Promotion, PromotionCode, ApplyScope, normalize_code
from quotedesk.exceptions import CodeNotEligibleError
from quotedesk.services.pricing_types import PricingContext, PricingLine, EligibilityResult
from quotedesk.services.redemption_ledger import check_code_limits
from quotedesk.utils.money import to_decimal


def lines_in_scope(promotion: Promotion, lines) -> List[PricingLine]:
    """Lines a promotion targets (all of them for order scope)."""
    scope = promotion.apply_scope or ApplyScope.ORDER.value

    if scope == ApplyScope.CATEGORY.value:
        targets = promotion.target_category_ids
        return [line for line in lines if line.category_ids & targets]

    if scope == ApplyScope.PRODUCT.value:
        product_ids = promotion.target_product_ids
        skus = promotion.target_skus
        return [
            line for line in lines
            if line.product_id in product_ids or (line.normalized_sku and line.normalized_sku in skus)
        ]

    return list(lines)


def bogo_buy_lines(action, scoped_lines) -> List[PricingLine]:
    """Lines whose units count as "buy" units (every scoped line when no buy SKU)."""
    buy_sku = normalize_code(action.buy_sku)
    if not buy_sku:
        return list(scoped_lines)
    return [line for line in scoped_lines if line.normalized_sku == buy_sku]


def bogo_get_lines(action, scoped_lines) -> List[PricingLine]:
    """Lines whose units can be discounted (the buy SKU when no get SKU)."""
    get_sku = normalize_code(action.get_sku) or normalize_code(action.buy_sku)
    if not get_sku:
        return list(scoped_lines)
    return [line for line in scoped_lines if line.normalized_sku == get_sku]


def bogo_free_units(action, scoped_lines) -> int:
    """
    Number of discounted units a BOGO action yields.

    With the same SKU on both sides (or none given) every group is
    buy_qty + get_qty units of the same pool; otherwise each complete
    buy group unlocks get_qty units of the get SKU.
    """
    buy_qty = action.buy_qty or 1
    get_qty = action.get_qty or 1
    buy_sku = normalize_code(action.buy_sku)
    get_sku = normalize_code(action.get_sku) or buy_sku

    buy_units = sum((line.quantity for line in bogo_buy_lines(action, scoped_lines)), Decimal('0'))
    if get_sku == buy_sku:
        return int(buy_units // (buy_qty + get_qty)) * get_qty

    get_units = sum((line.quantity for line in bogo_get_lines(action, scoped_lines)), Decimal('0'))
    return min(int(buy_units // buy_qty) * get_qty, int(get_units))


def _resolve_code(session: Session, promotion: Promotion, context: PricingContext,
                  now: datetime) -> Optional[int]:
    """
    Match the supplied code against the promotion's codes.

    Returns the matched code id (None for promotions without codes).

    Raises:
        CodeNotEligibleError: missing, unknown, inactive, out of window or exhausted
    """
    if not promotion.is_code_gated:
        return None

    supplied = context.normalized_code
    if not supplied:
        raise CodeNotEligibleError(None, 'code required')

    code: Optional[PromotionCode] = next(
        (c for c in promotion.codes if c.code == supplied), None
    )
    if code is None:
        raise CodeNotEligibleError(supplied, 'unknown code')
    if not code.is_active:
        raise CodeNotEligibleError(supplied, 'code inactive')
    if code.starts_at and now < code.starts_at:
        raise CodeNotEligibleError(supplied, 'code not yet valid')
    if code.ends_at and now > code.ends_at:
        raise CodeNotEligibleError(supplied, 'code expired')

    exhausted = check_code_limits(
        session, code, user_id=context.user_id, exclude_quote_id=context.quote_id
    )
    if exhausted:
        raise CodeNotEligibleError(supplied, exhausted)

    return code.id


def evaluate_eligibility(session: Session, promotion: Promotion, context: PricingContext,
                         now: datetime = None) -> EligibilityResult:
    """
    Check scope, global conditions and code of one promotion.

    Never raises for business reasons: a failed check yields
    ``EligibilityResult(eligible=False, reason=...)``.
    """
    if now is None:
        now = datetime.now()

    def reject(reason, code_id=None):
        return EligibilityResult(promotion=promotion, eligible=False, code_id=code_id, reason=reason)

    action = promotion.primary_action
    if action is None:
        return reject('no action configured')

    scoped = lines_in_scope(promotion, context.lines)
    if not scoped:
        return reject('no line in scope')

    if promotion.min_subtotal is not None and context.subtotal_ht < to_decimal(promotion.min_subtotal):
        return reject(f'subtotal below minimum ({promotion.min_subtotal})')

    if promotion.min_quantity is not None and context.quantity_total < Decimal(promotion.min_quantity):
        return reject(f'quantity below minimum ({promotion.min_quantity})')

    # No free unit, no BOGO
    if action.is_bogo and bogo_free_units(action, scoped) == 0:
        return reject(
            f'buy {action.buy_qty or 1} get {action.get_qty or 1}: '
            f'not enough units of {action.buy_sku or "scoped products"}'
        )

    try:
        code_id = _resolve_code(session, promotion, context, now)
    except CodeNotEligibleError as e:
        return reject(e.reason)

    return EligibilityResult(promotion=promotion, eligible=True, code_id=code_id)


def evaluate_all(session: Session, promotions, context: PricingContext,
                 now: datetime = None) -> List[EligibilityResult]:
    """Evaluate every catalog promotion, keeping the catalog order."""
    if now is None:
        now = datetime.now()
    return [evaluate_eligibility(session, promotion, context, now) for promotion in promotions]
