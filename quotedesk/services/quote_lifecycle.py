"""
Quote lifecycle - status state machine, expiry sweep and conversion to order.

Every status change goes through the transition table below; nothing
writes ``quote.status`` directly. Each applied transition appends a
QuoteStatusHistory row and one QUOTE_STATUS_CHANGED audit entry.
"""
from datetime import datetime, date
from typing import Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quotedesk.models import (
    Quote, QuoteStatus, QuoteStatusHistory, Order, OrderItem, OrderStatus, AuditAction
)
from quotedesk.exceptions import (
    BusinessLogicError, NotFoundError, InvalidTransitionError, DuplicateConversionError
)
from quotedesk.services.audit_service import log_action
from quotedesk.services.alert_service import notify_quote_expired
from quotedesk.services.quote_totals import calculate_totals_with_discount
from quotedesk.blueprints.metrics import (
    quote_transitions_total, quote_transitions_rejected_total, orders_created_total
)
from quotedesk.utils.numbering import next_document_number

logger = logging.getLogger(__name__)

TRANSITIONS = {
    QuoteStatus.DRAFT.value: frozenset({QuoteStatus.SENT.value, QuoteStatus.REJECTED.value}),
    QuoteStatus.SENT.value: frozenset({
        QuoteStatus.VIEWED.value, QuoteStatus.ACCEPTED.value,
        QuoteStatus.REJECTED.value, QuoteStatus.EXPIRED.value,
    }),
    QuoteStatus.VIEWED.value: frozenset({
        QuoteStatus.ACCEPTED.value, QuoteStatus.REJECTED.value, QuoteStatus.EXPIRED.value,
    }),
    QuoteStatus.ACCEPTED.value: frozenset({QuoteStatus.CONVERTED.value}),
    QuoteStatus.EXPIRED.value: frozenset({QuoteStatus.SENT.value}),
    QuoteStatus.REJECTED.value: frozenset(),
    QuoteStatus.CONVERTED.value: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

# Timestamp stamped when entering a status
STATUS_TIMESTAMPS = {
    QuoteStatus.SENT.value: 'sent_at',
    QuoteStatus.VIEWED.value: 'viewed_at',
    QuoteStatus.ACCEPTED.value: 'accepted_at',
    QuoteStatus.REJECTED.value: 'rejected_at',
    QuoteStatus.EXPIRED.value: 'expired_at',
    QuoteStatus.CONVERTED.value: 'converted_at',
}


def _status_value(status) -> str:
    return status.value if isinstance(status, QuoteStatus) else str(status)


def can_transition(current_status, new_status) -> bool:
    """True when ``current -> new`` is in the transition table."""
    return _status_value(new_status) in TRANSITIONS.get(_status_value(current_status), frozenset())


def get_allowed_transitions(current_status):
    return sorted(TRANSITIONS.get(_status_value(current_status), frozenset()))


def _apply_transition(session: Session, quote: Quote, new_status: str, actor_id: Optional[int],
                      comment: Optional[str], now: datetime) -> QuoteStatusHistory:
    """Write the transition into the session (caller checked the table, caller commits)."""
    old_status = quote.status
    quote.status = new_status

    stamp = STATUS_TIMESTAMPS.get(new_status)
    if stamp:
        setattr(quote, stamp, now)

    history = QuoteStatusHistory(
        quote_id=quote.id,
        actor_id=actor_id,
        from_status=old_status,
        to_status=new_status,
        comment=comment,
        created_at=now,
    )
    session.add(history)

    log_action(
        session,
        AuditAction.QUOTE_STATUS_CHANGED,
        resource_type='quote',
        resource_id=quote.id,
        actor_id=actor_id,
        details={'from': old_status, 'to': new_status, 'comment': comment}
    )
    quote_transitions_total.labels(from_status=old_status, to_status=new_status).inc()
    logger.info(f"[LIFECYCLE] Quote {quote.quote_number}: {old_status} -> {new_status} (actor {actor_id})")
    return history


def _reject_transition(quote: Quote, new_status: str) -> None:
    quote_transitions_rejected_total.labels(from_status=quote.status, to_status=new_status).inc()
    logger.warning(f"[LIFECYCLE] Quote {quote.quote_number}: {quote.status} -> {new_status} not allowed")


def change_status(session: Session, quote: Quote, new_status, actor_id: int = None,
                  comment: str = None, now: datetime = None) -> bool:
    """
    Move a quote to ``new_status`` and commit.

    Returns False, with nothing written, when the transition is not in the
    table: callers must check the return value. Infrastructure errors roll
    back and propagate.
    """
    new_status = _status_value(new_status)
    if now is None:
        now = datetime.now()

    if not can_transition(quote.status, new_status):
        _reject_transition(quote, new_status)
        return False

    try:
        session.begin_nested()
        _apply_transition(session, quote, new_status, actor_id, comment, now)
        session.commit()
        return True
    except Exception:
        session.rollback()
        raise


def transition_or_raise(session: Session, quote: Quote, new_status, actor_id: int = None,
                        comment: str = None, now: datetime = None) -> None:
    """Same as change_status, but an illegal transition raises InvalidTransitionError."""
    new_status = _status_value(new_status)
    current = quote.status
    if not change_status(session, quote, new_status, actor_id, comment, now):
        raise InvalidTransitionError(current, new_status)


def mark_as_expired(session: Session, quote: Quote, today: date = None,
                    actor_id: int = None, now: datetime = None) -> bool:
    """
    Expire a quote past its validity date (sent/viewed only).

    Routes through the transition table; raises one alert per newly
    expired quote. Returns True when the quote was expired by this call.
    """
    if today is None:
        today = date.today()
    if now is None:
        now = datetime.now()

    if not quote.is_expired_on(today) or quote.is_deleted:
        return False
    if not can_transition(quote.status, QuoteStatus.EXPIRED.value):
        _reject_transition(quote, QuoteStatus.EXPIRED.value)
        return False

    try:
        session.begin_nested()
        _apply_transition(
            session, quote, QuoteStatus.EXPIRED.value, actor_id,
            f"Validity date {quote.valid_until:%Y-%m-%d} passed", now
        )
        notify_quote_expired(session, quote)
        session.commit()
        return True
    except Exception:
        session.rollback()
        raise


def expire_stale_quotes(session: Session, today: date = None, now: datetime = None) -> int:
    """
    Daily sweep: expire every sent/viewed quote whose ``valid_until`` is past.

    Idempotent (a second run finds nothing to do). Returns the number of
    quotes expired.
    """
    if today is None:
        today = date.today()

    stale_ids = [row[0] for row in session.query(Quote.id).filter(
        Quote.deleted_at.is_(None),
        Quote.status.in_([QuoteStatus.SENT.value, QuoteStatus.VIEWED.value]),
        Quote.valid_until < today
    ).order_by(Quote.id).all()]

    expired = 0
    for quote_id in stale_ids:
        quote = session.query(Quote).filter(Quote.id == quote_id).with_for_update().first()
        # Re-checked under lock: a user may have accepted it meanwhile
        if quote and mark_as_expired(session, quote, today=today, now=now):
            expired += 1
        else:
            session.rollback()

    logger.info(f"[LIFECYCLE] Expiry sweep for {today:%Y-%m-%d}: {expired} quote(s) expired")
    return expired


def convert_to_order(session: Session, quote_id: int, actor_id: int = None, now: datetime = None,
                     order_prefix: str = 'CMD') -> Order:
    """
    Convert an accepted quote into an order (single authoritative point).

    Copies the quote's snapshots into the Order with totals recomputed
    from its items and stored discount, then moves the quote to
    ``converted``. The quote row is locked and ``orders.quote_id``
    is unique, so a concurrent second conversion fails without creating
    anything.

    Raises:
        NotFoundError: unknown or deleted quote
        DuplicateConversionError: the quote already has an order
        InvalidTransitionError: the quote is not accepted
    """
    if now is None:
        now = datetime.now()

    try:
        session.begin_nested()
        quote = session.query(Quote).filter(
            Quote.id == quote_id,
            Quote.deleted_at.is_(None)
        ).with_for_update().first()

        if not quote:
            raise NotFoundError(f'Quote {quote_id} not found.')

        existing = session.query(Order.id).filter(Order.quote_id == quote.id).first()
        if existing or quote.status == QuoteStatus.CONVERTED.value:
            raise DuplicateConversionError(quote.id)

        if not can_transition(quote.status, QuoteStatus.CONVERTED.value):
            _reject_transition(quote, QuoteStatus.CONVERTED.value)
            raise InvalidTransitionError(quote.status, QuoteStatus.CONVERTED.value)

        totals = calculate_totals_with_discount(quote.items, quote.discount_total)
        order = Order(
            order_number=next_document_number(session, Order.order_number, order_prefix, now.year),
            quote_id=quote.id,
            client_id=quote.client_id,
            user_id=actor_id if actor_id is not None else quote.user_id,
            status=OrderStatus.PENDING.value,
            order_date=now.date(),
            client_snapshot=dict(quote.client_snapshot) if quote.client_snapshot else None,
            subtotal_ht=totals.subtotal_ht,
            discount_total=totals.discount_total,
            total_tax=totals.total_tax,
            total_ttc=totals.total_ttc,
            currency_code=quote.currency_code,
            applied_promotions=[dict(entry) for entry in (quote.applied_promotions or [])],
            notes=quote.notes,
            internal_notes=quote.internal_notes,
        )
        for item in quote.items:
            order.items.append(OrderItem(
                product_id=item.product_id,
                product_name_snapshot=item.product_name_snapshot,
                product_description_snapshot=item.product_description_snapshot,
                product_sku_snapshot=item.product_sku_snapshot,
                category_ids_snapshot=list(item.category_ids_snapshot or []),
                unit_price_ht_snapshot=item.unit_price_ht_snapshot,
                tax_rate_snapshot=item.tax_rate_snapshot,
                quantity=item.quantity,
                line_total_ht=item.line_total_ht,
                line_tax_amount=item.line_tax_amount,
                line_total_ttc=item.line_total_ttc,
                discount_amount=item.discount_amount,
                sort_order=item.sort_order,
            ))
        session.add(order)
        session.flush()

        _apply_transition(
            session, quote, QuoteStatus.CONVERTED.value, actor_id,
            f"Converted to order {order.order_number}", now
        )
        log_action(
            session,
            AuditAction.QUOTE_CONVERTED,
            resource_type='quote',
            resource_id=quote.id,
            actor_id=actor_id,
            details={'order_id': order.id, 'order_number': order.order_number}
        )

        session.commit()
        orders_created_total.inc()
        logger.info(f"[LIFECYCLE] Quote {quote.quote_number} converted to order {order.order_number}")
        return order
    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e
    except IntegrityError:
        session.rollback()
        # Lost the race on orders.quote_id, or an order number collision
        already_converted = session.query(Order.id).filter(Order.quote_id == quote_id).first() is not None
        session.rollback()
        if already_converted:
            raise DuplicateConversionError(quote_id)
        raise
    except Exception:
        session.rollback()
        raise
