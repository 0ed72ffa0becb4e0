"""System alert model (notifications raised by scheduled jobs)."""
from datetime import datetime
from sqlalchemy import Column, BigInteger, String, Text, Boolean, DateTime
from quotedesk.database import Base, BigIntId


class SystemAlert(Base):
    """Notification shown to back-office users (e.g. a quote just expired)."""

    __tablename__ = 'system_alert'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    alert_type = Column(String(50), nullable=False, index=True)
    severity = Column(String(20), nullable=False, default='info')  # info, warning, critical
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    resource_type = Column(String(50), nullable=True)
    resource_id = Column(BigInteger, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    def __repr__(self):
        return f"<SystemAlert(type='{self.alert_type}', resource={self.resource_type}:{self.resource_id})>"
