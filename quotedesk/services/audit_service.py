"""
Audit logging service for tracking critical actions.

Every status transition and every redemption commit emits exactly one
row. The caller owns the transaction, so the audit row commits (or rolls
back) together with the change it describes.
"""
from datetime import datetime, timedelta
import json
import logging

from quotedesk.models.audit_log import AuditLog, AuditAction

logger = logging.getLogger(__name__)


def log_action(
    session,
    action: AuditAction,
    resource_type: str = None,
    resource_id: int = None,
    actor_id: int = None,
    details: dict = None
) -> AuditLog:
    """
    Log an auditable action to the database.

    Args:
        session: Database session
        action: AuditAction enum value
        resource_type: Type of resource affected (e.g., 'quote', 'promotion_code')
        resource_id: ID of the affected resource
        actor_id: User performing the action (None for scheduled jobs)
        details: Dict with additional details (will be JSON encoded)
    """
    # Serialize details to JSON
    details_json = None
    if details:
        try:
            details_json = json.dumps(details, default=str)
        except (TypeError, ValueError) as e:
            logger.warning(f"Failed to serialize audit details: {e}")
            details_json = str(details)

    audit_entry = AuditLog(
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details_json,
        created_at=datetime.now()
    )
    session.add(audit_entry)
    # Note: Caller is responsible for committing the session

    logger.info(f"Audit log created: {action.value} by actor {actor_id} on {resource_type} {resource_id}")
    return audit_entry


def get_audit_logs(
    session,
    limit: int = 100,
    offset: int = 0,
    action_filter: AuditAction = None,
    actor_id_filter: int = None,
    resource_type_filter: str = None,
    resource_id_filter: int = None
):
    """
    Retrieve audit logs with optional filters, most recent first.

    Returns:
        List of AuditLog objects
    """
    query = session.query(AuditLog)

    if action_filter:
        query = query.filter(AuditLog.action == action_filter)

    if actor_id_filter:
        query = query.filter(AuditLog.actor_id == actor_id_filter)

    if resource_type_filter:
        query = query.filter(AuditLog.resource_type == resource_type_filter)

    if resource_id_filter:
        query = query.filter(AuditLog.resource_id == resource_id_filter)

    query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    query = query.limit(limit).offset(offset)

    return query.all()


def purge_audit_logs(session, retention_days: int, now: datetime = None) -> int:
    """
    Delete audit rows older than the retention period (scheduled cleanup).

    Idempotent; returns the number of deleted rows.
    """
    if now is None:
        now = datetime.now()
    cutoff = now - timedelta(days=retention_days)

    try:
        deleted = session.query(AuditLog).filter(
            AuditLog.created_at < cutoff
        ).delete(synchronize_session=False)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"Purged {deleted} audit log rows older than {cutoff:%Y-%m-%d}")
    return deleted
