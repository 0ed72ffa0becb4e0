"""
Audit Log model for tracking critical actions in the system.
Append-only: rows are inserted by the audit service and only removed by
the retention cleanup job.
"""
from sqlalchemy import Column, BigInteger, String, Text, DateTime, Enum as SQLEnum
from datetime import datetime
import enum

from quotedesk.database import Base, BigIntId


class AuditAction(enum.Enum):
    """Enumeration of auditable actions."""
    # Quotes
    QUOTE_CREATED = "QUOTE_CREATED"
    QUOTE_UPDATED = "QUOTE_UPDATED"
    QUOTE_DELETED = "QUOTE_DELETED"
    QUOTE_PRICED = "QUOTE_PRICED"
    QUOTE_STATUS_CHANGED = "QUOTE_STATUS_CHANGED"
    QUOTE_CONVERTED = "QUOTE_CONVERTED"

    # Promotions
    PROMOTION_REDEEMED = "PROMOTION_REDEEMED"
    PROMOTION_RELEASED = "PROMOTION_RELEASED"
    PROMOTION_CODE_RECONCILED = "PROMOTION_CODE_RECONCILED"
    PROMOTION_CREATED = "PROMOTION_CREATED"
    PROMOTION_UPDATED = "PROMOTION_UPDATED"
    PROMOTION_TOGGLED = "PROMOTION_TOGGLED"
    PROMOTION_DELETED = "PROMOTION_DELETED"


class AuditLog(Base):
    """Audit log for tracking user and scheduled-job actions."""
    __tablename__ = 'audit_log'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    actor_id = Column(BigInteger, nullable=True)  # None for scheduled jobs
    action = Column(SQLEnum(AuditAction, name='audit_action'), nullable=False, index=True)
    resource_type = Column(String(50))  # e.g., 'quote', 'promotion_code'
    resource_id = Column(BigInteger)  # ID of the affected resource
    details = Column(Text)  # JSON with additional details
    created_at = Column(DateTime, default=datetime.now, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog {self.action.value} by actor {self.actor_id} at {self.created_at}>"
