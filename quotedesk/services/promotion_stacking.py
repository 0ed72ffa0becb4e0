"""Stacking resolver - priority, exclusivity and stop-further-processing."""
from typing import Iterable

from quotedesk.services.pricing_types import EligibilityResult, Rejection, StackingResult

BLOCKED_BY_EXCLUSIVE = 'blocked_by_exclusive'
EXCLUSIVE_CONFLICT = 'exclusive_conflict'
STOPPED_BY_PRIORITY = 'stopped_by_priority'
NO_DISCOUNT = 'no_discount'


def resolve_stacking(candidates: Iterable[EligibilityResult]) -> StackingResult:
    """
    Pick the promotions that actually apply among the eligible ones.

    Walk by (priority, id):
    - once an exclusive promotion applied, everything else is skipped;
    - an exclusive promotion only applies to an empty set (then locks it);
    - a promotion with ``stop_further_processing`` ends the walk once applied.
    Ineligible results passed in are ignored.
    """
    ordered = sorted((c for c in candidates if c.eligible), key=lambda c: c.sort_key)

    applied = []
    skipped = []
    exclusive_lock = False

    for position, candidate in enumerate(ordered):
        promotion = candidate.promotion

        if exclusive_lock:
            skipped.append(Rejection(promotion.id, promotion.name, BLOCKED_BY_EXCLUSIVE))
            continue

        if promotion.is_exclusive:
            if applied:
                skipped.append(Rejection(promotion.id, promotion.name, EXCLUSIVE_CONFLICT))
                continue
            exclusive_lock = True

        applied.append(candidate)

        if promotion.stop_further_processing:
            reason = BLOCKED_BY_EXCLUSIVE if exclusive_lock else STOPPED_BY_PRIORITY
            skipped.extend(
                Rejection(rest.promotion.id, rest.promotion.name, reason)
                for rest in ordered[position + 1:]
            )
            break

    return StackingResult(applied=applied, skipped=skipped)
