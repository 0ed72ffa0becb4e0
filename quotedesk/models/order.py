"""Order model - immutable financial record converted from an accepted quote."""
import enum
from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, Date, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from quotedesk.database import Base, BigIntId


class OrderStatus(str, enum.Enum):
    """Order status enum."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Order(Base):
    """
    Order (commande).

    Copies the quote's lines and totals as a snapshot; it is never
    recomputed from the catalog afterwards. ``quote_id`` is unique so a
    quote can be converted at most once.
    """

    __tablename__ = 'orders'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    order_number = Column(String(64), nullable=False, unique=True)
    quote_id = Column(BigInteger, ForeignKey('quote.id'), nullable=True, unique=True)
    client_id = Column(BigInteger, nullable=True)
    user_id = Column(BigInteger, nullable=True)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)
    order_date = Column(Date, nullable=False)
    client_snapshot = Column(JSON, nullable=True)

    subtotal_ht = Column(Numeric(14, 2), nullable=False)
    discount_total = Column(Numeric(14, 2), nullable=False, default=0)
    total_tax = Column(Numeric(14, 2), nullable=False)
    total_ttc = Column(Numeric(14, 2), nullable=False)
    currency_code = Column(String(3), nullable=False, default='EUR')
    applied_promotions = Column(JSON, nullable=False, default=list)

    notes = Column(Text, nullable=True)
    internal_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    # Relationships
    quote = relationship('Quote', back_populates='order')
    items = relationship(
        'OrderItem', back_populates='order',
        cascade='all, delete-orphan', order_by='OrderItem.sort_order'
    )

    def __repr__(self):
        return f"<Order(id={self.id}, number='{self.order_number}', quote_id={self.quote_id}, total={self.total_ttc})>"
