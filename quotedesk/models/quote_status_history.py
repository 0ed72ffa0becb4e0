"""Append-only status history of a quote."""
from datetime import datetime
from sqlalchemy import Column, BigInteger, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from quotedesk.database import Base, BigIntId


class QuoteStatusHistory(Base):
    """One row per status transition. Rows are never updated or deleted."""

    __tablename__ = 'quote_status_history'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    quote_id = Column(BigInteger, ForeignKey('quote.id', ondelete='CASCADE'), nullable=False, index=True)
    actor_id = Column(BigInteger, nullable=True)  # None for scheduled jobs
    from_status = Column(String(20), nullable=False)
    to_status = Column(String(20), nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    quote = relationship('Quote', back_populates='status_histories')

    def __repr__(self):
        return f"<QuoteStatusHistory(quote_id={self.quote_id}, {self.from_status}->{self.to_status})>"
