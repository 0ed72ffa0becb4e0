"""
Alerting for back-office events (fire-and-forget).

Alerts are written inside a savepoint: a failing alert is logged and
rolled back on its own, it never aborts the job that raised it.
"""
import logging

from sqlalchemy.exc import SQLAlchemyError

from quotedesk.models import SystemAlert

logger = logging.getLogger(__name__)

QUOTE_EXPIRED = 'quote_expired'


def raise_alert(session, alert_type: str, title: str, message: str = None,
                severity: str = 'info', resource_type: str = None, resource_id: int = None):
    """Persist a SystemAlert; returns it, or None when the write failed."""
    try:
        with session.begin_nested():
            alert = SystemAlert(
                alert_type=alert_type,
                severity=severity,
                title=title,
                message=message,
                resource_type=resource_type,
                resource_id=resource_id,
            )
            session.add(alert)
        return alert
    except SQLAlchemyError as e:
        logger.warning(f"[ALERT] Could not record {alert_type} alert for {resource_type} {resource_id}: {e}")
        return None


def notify_quote_expired(session, quote):
    """One alert per newly expired quote."""
    return raise_alert(
        session,
        QUOTE_EXPIRED,
        title=f"Quote {quote.quote_number} expired",
        message=f"Valid until {quote.valid_until:%Y-%m-%d}; no answer from the client.",
        severity='warning',
        resource_type='quote',
        resource_id=quote.id,
    )


def get_unread_alerts(session, alert_type: str = None, limit: int = 50):
    query = session.query(SystemAlert).filter(SystemAlert.is_read.is_(False))
    if alert_type:
        query = query.filter(SystemAlert.alert_type == alert_type)
    return query.order_by(SystemAlert.created_at.desc()).limit(limit).all()
