"""Promotion catalog - promotions structurally active at a given instant."""
from datetime import datetime
from typing import List

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from quotedesk.models import Promotion


def is_structurally_active(promotion: Promotion, now: datetime) -> bool:
    """
    Active flag, tombstone, date window and weekday mask.

    No business eligibility here (scope, conditions and codes are checked
    by the eligibility evaluator).
    """
    if not promotion.is_active or promotion.deleted_at is not None:
        return False
    if promotion.starts_at and promotion.starts_at > now:
        return False
    if promotion.ends_at and promotion.ends_at < now:
        return False
    return promotion.runs_on(now)


def load_active_promotions(session: Session, now: datetime = None) -> List[Promotion]:
    """
    Load promotions structurally eligible at ``now``, ordered by (priority, id).

    The window filter runs in SQL; the weekday mask is checked in Python so
    the query stays portable.
    """
    if now is None:
        now = datetime.now()

    promotions = session.query(Promotion).options(
        selectinload(Promotion.actions),
        selectinload(Promotion.codes),
        selectinload(Promotion.category_targets),
        selectinload(Promotion.product_targets),
    ).filter(
        Promotion.is_active.is_(True),
        Promotion.deleted_at.is_(None),
        or_(Promotion.starts_at.is_(None), Promotion.starts_at <= now),
        or_(Promotion.ends_at.is_(None), Promotion.ends_at >= now),
    ).order_by(Promotion.priority.asc(), Promotion.id.asc()).all()

    return [p for p in promotions if p.runs_on(now)]
