"""QuoteItem model for quote line items."""
from sqlalchemy import Column, BigInteger, String, Numeric, Integer, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship
from quotedesk.database import Base, BigIntId


class QuoteItem(Base):
    """
    Quote Item (line of a quote).

    Stores snapshot of product details at the time of quote creation
    to preserve pricing and product info even if the catalog changes later.
    """

    __tablename__ = 'quote_item'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    quote_id = Column(BigInteger, ForeignKey('quote.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(String(64), nullable=False)  # catalog reference
    product_name_snapshot = Column(String(255), nullable=False)
    product_description_snapshot = Column(Text, nullable=True)
    product_sku_snapshot = Column(String(100), nullable=True)
    category_ids_snapshot = Column(JSON, nullable=False, default=list)
    unit_price_ht_snapshot = Column(Numeric(14, 2), nullable=False)
    tax_rate_snapshot = Column(Numeric(6, 3), nullable=False, default=0)  # percent
    quantity = Column(Numeric(12, 3), nullable=False)
    line_total_ht = Column(Numeric(14, 2), nullable=False, default=0)
    line_tax_amount = Column(Numeric(14, 2), nullable=False, default=0)
    line_total_ttc = Column(Numeric(14, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(14, 2), nullable=False, default=0)
    sort_order = Column(Integer, nullable=False, default=0)

    # Relationships
    quote = relationship('Quote', back_populates='items')

    def __repr__(self):
        return f"<QuoteItem(id={self.id}, quote_id={self.quote_id}, product='{self.product_name_snapshot}', qty={self.quantity}, total={self.line_total_ht})>"
