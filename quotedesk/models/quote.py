"""Quote model (sales quote / devis)."""
import enum
from datetime import date
from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, Date, Text, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from quotedesk.database import Base, BigIntId


class QuoteStatus(str, enum.Enum):
    """Quote status enum."""
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CONVERTED = "converted"


# Statuses in which lines and promotions may still change
EDITABLE_STATUSES = frozenset({
    QuoteStatus.DRAFT.value, QuoteStatus.SENT.value,
    QuoteStatus.VIEWED.value, QuoteStatus.EXPIRED.value,
})


class Quote(Base):
    """
    Quote (pricing document preceding an order).

    Client and product data are frozen as snapshots at quote time; pricing
    never re-reads the live catalog. ``subtotal_ht`` is the sum of the lines
    before discount, ``total_tax`` the tax after discount.
    """

    __tablename__ = 'quote'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    quote_number = Column(String(64), nullable=False, unique=True)
    client_id = Column(BigInteger, nullable=True)
    user_id = Column(BigInteger, nullable=True)  # creator (external users table)
    status = Column(String(20), nullable=False, default=QuoteStatus.DRAFT.value, index=True)

    quote_date = Column(Date, nullable=False, default=date.today)
    valid_until = Column(Date, nullable=True, index=True)
    sent_at = Column(DateTime, nullable=True)
    viewed_at = Column(DateTime, nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    expired_at = Column(DateTime, nullable=True)
    converted_at = Column(DateTime, nullable=True)

    client_snapshot = Column(JSON, nullable=True)  # name/address at quote time
    currency_code = Column(String(3), nullable=False, default='EUR')
    terms_conditions = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    internal_notes = Column(Text, nullable=True)

    # Totals
    subtotal_ht = Column(Numeric(14, 2), nullable=False, default=0)
    discount_total = Column(Numeric(14, 2), nullable=False, default=0)
    total_tax = Column(Numeric(14, 2), nullable=False, default=0)
    total_ttc = Column(Numeric(14, 2), nullable=False, default=0)

    # Promotions
    promo_code = Column(String(64), nullable=True)
    applied_promotions = Column(JSON, nullable=False, default=list)

    deleted_at = Column(DateTime, nullable=True)  # tombstone
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    items = relationship(
        'QuoteItem', back_populates='quote',
        cascade='all, delete-orphan', order_by='QuoteItem.sort_order'
    )
    status_histories = relationship(
        'QuoteStatusHistory', back_populates='quote',
        cascade='all, delete-orphan', order_by='QuoteStatusHistory.id'
    )
    order = relationship('Order', back_populates='quote', uselist=False)

    def __repr__(self):
        return f"<Quote(id={self.id}, number='{self.quote_number}', status='{self.status}', total={self.total_ttc})>"

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @property
    def is_editable(self):
        return self.status in EDITABLE_STATUSES and not self.is_deleted

    def is_expired_on(self, today: date = None) -> bool:
        """Past its validity date while still waiting for the client."""
        if today is None:
            today = date.today()
        return (
            self.valid_until is not None
            and self.valid_until < today
            and self.status in (QuoteStatus.SENT.value, QuoteStatus.VIEWED.value)
        )
