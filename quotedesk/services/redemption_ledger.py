"""
Redemption ledger - atomic check-and-increment of promotion code usage.

The redemption rows are the source of truth; ``PromotionCode.uses`` is a
cached counter kept in step by ``commit_redemption`` and
``release_redemption``. Commits only happen on
the final save path of a quote, never while re-pricing speculatively.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
import logging

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quotedesk.models import PromotionCode, PromotionRedemption, AuditAction
from quotedesk.exceptions import (
    NotFoundError, BusinessLogicError, CodeNotEligibleError,
    LimitExceededError, DuplicateRedemptionError
)
from quotedesk.services.audit_service import log_action
from quotedesk.blueprints.metrics import promotion_redemptions_total
from quotedesk.utils.money import round2

logger = logging.getLogger(__name__)


def count_redemptions(session: Session, code_id: int, user_id: int = None,
                      exclude_quote_id: int = None) -> int:
    """Redemption rows of a code, optionally for one user and/or ignoring one quote."""
    query = session.query(func.count(PromotionRedemption.id)).filter(
        PromotionRedemption.promotion_code_id == code_id
    )
    if user_id is not None:
        query = query.filter(PromotionRedemption.user_id == user_id)
    if exclude_quote_id is not None:
        query = query.filter(PromotionRedemption.quote_id != exclude_quote_id)
    return query.scalar() or 0


def has_redemption(session: Session, quote_id: int, promotion_id: int) -> bool:
    return session.query(PromotionRedemption.id).filter(
        PromotionRedemption.quote_id == quote_id,
        PromotionRedemption.promotion_id == promotion_id
    ).first() is not None


def check_code_limits(session: Session, code: PromotionCode, user_id: int = None,
                      exclude_quote_id: int = None) -> Optional[str]:
    """
    Read-only limit check used at evaluation time.

    Returns None when the code can still be redeemed, otherwise the reason.
    Redemptions already recorded for ``exclude_quote_id`` do not count (a
    quote being re-priced keeps the code it already redeemed).
    """
    if code.max_redemptions is not None:
        used = count_redemptions(session, code.id, exclude_quote_id=exclude_quote_id)
        if used >= code.max_redemptions:
            return f"usage limit reached ({code.max_redemptions})"

    if code.max_per_user is not None and user_id is not None:
        used_by_user = count_redemptions(
            session, code.id, user_id=user_id, exclude_quote_id=exclude_quote_id
        )
        if used_by_user >= code.max_per_user:
            return f"per-user limit reached ({code.max_per_user})"

    return None


def commit_redemption(
    session: Session,
    promotion_id: int,
    code_id: Optional[int],
    user_id: Optional[int],
    quote_id: int,
    amount: Decimal,
    now: datetime = None,
    actor_id: int = None
) -> PromotionRedemption:
    """
    Record one redemption and bump the code counter in the caller's transaction.

    Limits are re-validated here, not only at evaluation time: the counter
    is incremented with a conditional UPDATE (``uses < max_redemptions``)
    after locking the code row, so two quotes racing for the last use
    cannot both succeed. Flushes but never commits; on any error the caller
    must roll back the whole pricing unit.

    Raises:
        DuplicateRedemptionError: (quote_id, promotion_id) already recorded
        LimitExceededError: max_redemptions / max_per_user exhausted
        CodeNotEligibleError: code deactivated or out of its window since evaluation
    """
    if now is None:
        now = datetime.now()

    if has_redemption(session, quote_id, promotion_id):
        promotion_redemptions_total.labels(outcome='duplicate').inc()
        raise DuplicateRedemptionError(quote_id, promotion_id)

    if code_id is not None:
        code = session.query(PromotionCode).filter(
            PromotionCode.id == code_id
        ).with_for_update().first()

        if not code:
            raise NotFoundError(f'Promotion code {code_id} not found.')
        if code.promotion_id != promotion_id:
            raise BusinessLogicError(f'Code {code.code} does not belong to promotion {promotion_id}.')
        if not code.is_valid_at(now):
            raise CodeNotEligibleError(code.code, 'inactive or outside its validity window')

        # Compare-and-swap on the cached counter
        result = session.execute(
            update(PromotionCode)
            .where(
                PromotionCode.id == code_id,
                or_(
                    PromotionCode.max_redemptions.is_(None),
                    PromotionCode.uses < PromotionCode.max_redemptions
                )
            )
            .values(uses=PromotionCode.uses + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            promotion_redemptions_total.labels(outcome='limit_exceeded').inc()
            logger.warning(f"[LEDGER] Code {code.code} exhausted while committing quote {quote_id}")
            raise LimitExceededError(code_id, 'max_redemptions', code.max_redemptions)
        session.expire(code, ['uses'])

        # Counted after the increment: the row lock serializes concurrent commits
        if code.max_per_user is not None and user_id is not None:
            used_by_user = count_redemptions(session, code_id, user_id=user_id)
            if used_by_user >= code.max_per_user:
                promotion_redemptions_total.labels(outcome='limit_exceeded').inc()
                raise LimitExceededError(code_id, 'max_per_user', code.max_per_user)

    redemption = PromotionRedemption(
        promotion_id=promotion_id,
        promotion_code_id=code_id,
        user_id=user_id,
        quote_id=quote_id,
        used_at=now,
        amount_discounted=round2(amount),
    )
    session.add(redemption)
    try:
        session.flush()
    except IntegrityError:
        promotion_redemptions_total.labels(outcome='duplicate').inc()
        raise DuplicateRedemptionError(quote_id, promotion_id)

    log_action(
        session,
        AuditAction.PROMOTION_REDEEMED,
        resource_type='quote',
        resource_id=quote_id,
        actor_id=actor_id if actor_id is not None else user_id,
        details={
            'promotion_id': promotion_id,
            'code_id': code_id,
            'user_id': user_id,
            'amount_discounted': str(round2(amount)),
        }
    )
    promotion_redemptions_total.labels(outcome='committed').inc()
    logger.info(f"[LEDGER] Redemption committed: promotion {promotion_id} code {code_id} quote {quote_id}")
    return redemption


def release_redemption(session: Session, redemption: PromotionRedemption, actor_id: int = None) -> None:
    """
    Give back one redemption in the caller's transaction (no commit).

    Deletes the row and decrements the code counter; the UPDATE is
    guarded on ``uses > 0`` so the counter never goes negative.
    """
    quote_id = redemption.quote_id
    promotion_id = redemption.promotion_id
    code_id = redemption.promotion_code_id
    amount = round2(redemption.amount_discounted)

    session.delete(redemption)
    session.flush()

    if code_id is not None:
        session.execute(
            update(PromotionCode)
            .where(PromotionCode.id == code_id, PromotionCode.uses > 0)
            .values(uses=PromotionCode.uses - 1)
            .execution_options(synchronize_session=False)
        )
        code = session.get(PromotionCode, code_id)
        if code is not None:
            session.expire(code, ['uses'])

    log_action(
        session,
        AuditAction.PROMOTION_RELEASED,
        resource_type='quote',
        resource_id=quote_id,
        actor_id=actor_id,
        details={
            'promotion_id': promotion_id,
            'code_id': code_id,
            'amount_discounted': str(amount),
        }
    )
    promotion_redemptions_total.labels(outcome='released').inc()
    logger.info(f"[LEDGER] Redemption released: promotion {promotion_id} code {code_id} quote {quote_id}")


def sync_quote_redemptions(session: Session, quote_id: int, redeemable, actor_id: int = None) -> int:
    """
    Bring a quote's existing redemptions in line with its new pricing.

    Rows whose promotion (or code) is no longer applied are released; the
    kept ones get the new ``amount_discounted``. Returns the number released.
    """
    current = {(a.promotion_id, a.code_id): a for a in redeemable}
    released = 0
    rows = session.query(PromotionRedemption).filter(
        PromotionRedemption.quote_id == quote_id
    ).order_by(PromotionRedemption.id).all()

    for row in rows:
        applied = current.get((row.promotion_id, row.promotion_code_id))
        if applied is None:
            release_redemption(session, row, actor_id=actor_id)
            released += 1
        elif row.amount_discounted != round2(applied.amount_discounted):
            row.amount_discounted = round2(applied.amount_discounted)
    return released


def reconcile_code_uses(session: Session, actor_id: int = None) -> int:
    """
    Repair ``PromotionCode.uses`` from the redemption rows.

    Returns the number of codes whose counter was corrected.
    """
    counts = dict(
        session.query(PromotionRedemption.promotion_code_id, func.count(PromotionRedemption.id))
        .filter(PromotionRedemption.promotion_code_id.isnot(None))
        .group_by(PromotionRedemption.promotion_code_id)
        .all()
    )

    fixed = 0
    try:
        for code in session.query(PromotionCode).with_for_update().all():
            actual = counts.get(code.id, 0)
            if code.uses != actual:
                logger.warning(f"[LEDGER] Code {code.code}: uses={code.uses}, ledger rows={actual}")
                log_action(
                    session,
                    AuditAction.PROMOTION_CODE_RECONCILED,
                    resource_type='promotion_code',
                    resource_id=code.id,
                    actor_id=actor_id,
                    details={'cached_uses': code.uses, 'ledger_rows': actual}
                )
                code.uses = actual
                fixed += 1
        session.commit()
    except Exception:
        session.rollback()
        raise

    return fixed
