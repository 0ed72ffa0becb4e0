"""
Promotion pricing service - runs the pipeline and persists its outcome.

catalog -> eligibility -> stacking -> discount -> totals. Previews never
write anything; ``price_and_store_quote`` (used by the save paths) is the
only place that stores a pricing and commits code redemptions.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from quotedesk.models import Quote, AuditAction
from quotedesk.exceptions import BusinessLogicError, NotFoundError
from quotedesk.services.pricing_types import PricingContext, PricingResult, Rejection
from quotedesk.services.promotion_catalog import load_active_promotions
from quotedesk.services.promotion_eligibility import evaluate_all
from quotedesk.services.promotion_stacking import resolve_stacking, NO_DISCOUNT
from quotedesk.services.discount_calculator import calculate_discounts
from quotedesk.services.quote_totals import (
    totals_from_values, line_values, refresh_line_totals,
    calculate_totals_with_discount, apply_totals
)
from quotedesk.services.redemption_ledger import commit_redemption, has_redemption, sync_quote_redemptions
from quotedesk.services.audit_service import log_action
from quotedesk.blueprints.metrics import promotions_applied_total
from quotedesk.utils.money import money_str, ZERO

logger = logging.getLogger(__name__)


def _code_message(context: PricingContext, promotions, rejections: List[Rejection]) -> Optional[str]:
    """Why a supplied code did not end up in the applied set (None when it did)."""
    code = context.normalized_code
    if not code:
        return None

    gated = {p.id for p in promotions if any(c.code == code for c in p.codes)}
    if not gated:
        return f"Code {code} is not valid"

    reason = next((r.reason for r in rejections if r.promotion_id in gated), None)
    return f"Code {code} not applied: {reason or 'not eligible'}"


def price_context(session: Session, context: PricingContext, now: datetime = None) -> PricingResult:
    """
    Price a context without touching the database state.

    Every considered-but-not-applied promotion is reported in
    ``rejections`` with its reason.
    """
    if now is None:
        now = datetime.now()

    promotions = load_active_promotions(session, now)
    evaluations = evaluate_all(session, promotions, context, now)

    rejections = [
        Rejection(e.promotion_id, e.promotion.name, e.reason)
        for e in evaluations if not e.eligible
    ]

    # A promotion worth nothing is dropped and the stack resolved again
    candidates = [e for e in evaluations if e.eligible]
    while True:
        stacking = resolve_stacking(candidates)
        breakdown = calculate_discounts(stacking.applied, context.lines)
        worthless = {a.promotion_id for a in breakdown.applied if a.amount_discounted <= 0}
        if not worthless:
            break
        rejections.extend(
            Rejection(c.promotion_id, c.promotion.name, NO_DISCOUNT)
            for c in candidates if c.promotion_id in worthless
        )
        candidates = [c for c in candidates if c.promotion_id not in worthless]
    rejections.extend(stacking.skipped)

    code_message = None
    if context.normalized_code and not any(a.code_id is not None for a in breakdown.applied):
        code_message = _code_message(context, promotions, rejections)

    return PricingResult(
        context=context,
        applied=breakdown.applied,
        discount_total=breakdown.discount_total,
        line_discounts=breakdown.line_discounts,
        rejections=rejections,
        code_message=code_message,
    )


def _get_live_quote(session: Session, quote_id: int, lock: bool = False) -> Quote:
    query = session.query(Quote).filter(Quote.id == quote_id, Quote.deleted_at.is_(None))
    if lock:
        query = query.with_for_update()
    quote = query.first()
    if not quote:
        raise NotFoundError(f'Quote {quote_id} not found.')
    return quote


def preview_quote_pricing(session: Session, quote_id: int, code: str = None, user_id: int = None,
                          now: datetime = None) -> Dict[str, Any]:
    """Speculative re-pricing of a stored quote (live edit). Writes nothing."""
    quote = _get_live_quote(session, quote_id)
    context = PricingContext.from_quote(
        quote, supplied_code=code, user_id=user_id if user_id is not None else quote.user_id
    )
    result = price_context(session, context, now)
    totals = totals_from_values(line_values(context.lines), result.discount_total)

    data = result.to_dict()
    data['totals'] = totals.to_dict()
    return data


def preview_from_payload(session: Session, items: List[Dict[str, Any]], code: str = None,
                         user_id: int = None, now: datetime = None) -> Dict[str, Any]:
    """
    Price a transient cart (nothing persisted).

    Returns totals before and after discount, the applied promotions and
    the discount of every line.
    """
    context = PricingContext.from_payload(items, supplied_code=code, user_id=user_id)
    result = price_context(session, context, now)

    values = line_values(context.lines)
    before = totals_from_values(values)
    after = totals_from_values(values, result.discount_total)

    data = result.to_dict()
    data.update({
        'subtotal': money_str(before.subtotal_ht),
        'tax_total': money_str(before.total_tax),
        'grand_total': money_str(before.total_ttc),
        'discount_total': money_str(after.discount_total),
        'net_subtotal': money_str(after.net_subtotal_ht),
        'tax_total_after': money_str(after.total_tax),
        'grand_total_after': money_str(after.total_ttc),
    })
    return data


def price_and_store_quote(session: Session, quote: Quote, code: str = None, actor_id: int = None,
                          user_id: int = None, now: datetime = None) -> PricingResult:
    """
    Price a quote and write the outcome into the session (no commit).

    Stores per-line discounts, discount-aware totals and
    ``applied_promotions``. Redemptions of promotions the quote no longer
    gets are released, then one redemption is committed per applied
    code-gated promotion not yet redeemed by this quote. The caller owns
    the transaction and must roll back on any error.
    """
    if now is None:
        now = datetime.now()

    context = PricingContext.from_quote(
        quote, supplied_code=code, user_id=user_id if user_id is not None else quote.user_id
    )
    result = price_context(session, context, now)

    refresh_line_totals(quote.items)
    for index, item in enumerate(quote.items):
        item.discount_amount = result.line_discounts.get(index, ZERO)
    apply_totals(quote, calculate_totals_with_discount(quote.items, result.discount_total))
    quote.applied_promotions = result.applied_promotions_payload()
    quote.promo_code = context.normalized_code

    sync_quote_redemptions(session, quote.id, result.redeemable, actor_id=actor_id)
    for applied in result.redeemable:
        if has_redemption(session, quote.id, applied.promotion_id):
            continue
        commit_redemption(
            session,
            promotion_id=applied.promotion_id,
            code_id=applied.code_id,
            user_id=context.user_id,
            quote_id=quote.id,
            amount=applied.amount_discounted,
            now=now,
            actor_id=actor_id,
        )

    log_action(
        session,
        AuditAction.QUOTE_PRICED,
        resource_type='quote',
        resource_id=quote.id,
        actor_id=actor_id,
        details={
            'discount_total': money_str(result.discount_total),
            'promotion_ids': [a.promotion_id for a in result.applied],
            'code': context.normalized_code,
            'code_message': result.code_message,
        }
    )
    return result


def record_applied_metrics(result: PricingResult) -> None:
    for applied in result.applied:
        promotions_applied_total.labels(action_type=applied.action_type).inc()


def apply_promotions_to_quote(session: Session, quote_id: int, code: str = None, actor_id: int = None,
                              user_id: int = None, now: datetime = None) -> PricingResult:
    """
    Final save path: price a stored quote, persist the outcome and commit.

    A LimitExceededError (code exhausted by a concurrent quote since
    evaluation) rolls the whole unit back, so the quote is never saved
    with a promotion it could not redeem.
    """
    try:
        session.begin_nested()
        quote = _get_live_quote(session, quote_id, lock=True)
        if not quote.is_editable:
            raise BusinessLogicError(f'Quote {quote.quote_number} can no longer be priced ({quote.status}).')

        result = price_and_store_quote(session, quote, code, actor_id=actor_id, user_id=user_id, now=now)
        session.commit()
    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e
    except Exception:
        session.rollback()
        raise

    record_applied_metrics(result)
    logger.info(
        f"[PRICING] Quote {quote_id}: {len(result.applied)} promotion(s), discount {money_str(result.discount_total)}"
    )
    return result
