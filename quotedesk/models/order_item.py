"""Order Item model."""
from sqlalchemy import Column, BigInteger, String, Numeric, Integer, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship
from quotedesk.database import Base, BigIntId


class OrderItem(Base):
    """Order Item (deep copy of a quote item snapshot)."""

    __tablename__ = 'order_item'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(String(64), nullable=False)
    product_name_snapshot = Column(String(255), nullable=False)
    product_description_snapshot = Column(Text, nullable=True)
    product_sku_snapshot = Column(String(100), nullable=True)
    category_ids_snapshot = Column(JSON, nullable=False, default=list)
    unit_price_ht_snapshot = Column(Numeric(14, 2), nullable=False)
    tax_rate_snapshot = Column(Numeric(6, 3), nullable=False, default=0)
    quantity = Column(Numeric(12, 3), nullable=False)
    line_total_ht = Column(Numeric(14, 2), nullable=False)
    line_tax_amount = Column(Numeric(14, 2), nullable=False)
    line_total_ttc = Column(Numeric(14, 2), nullable=False)
    discount_amount = Column(Numeric(14, 2), nullable=False, default=0)
    sort_order = Column(Integer, nullable=False, default=0)

    # Relationships
    order = relationship('Order', back_populates='items')

    def __repr__(self):
        return f"<OrderItem(id={self.id}, order_id={self.order_id}, product_id='{self.product_id}', qty={self.quantity})>"
