"""PromotionRedemption model - redemption ledger (released when a quote drops the promotion)."""
from sqlalchemy import Column, BigInteger, Numeric, DateTime, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from quotedesk.database import Base, BigIntId


class PromotionRedemption(Base):
    """
    One consumption of a promotion by one quote.

    Unique on (quote_id, promotion_id): committing twice for the same pair
    cannot double count.
    """

    __tablename__ = 'promotion_redemption'
    __table_args__ = (
        UniqueConstraint('quote_id', 'promotion_id', name='uq_redemption_quote_promotion'),
        Index('ix_redemption_promotion_used_at', 'promotion_id', 'used_at'),
        Index('ix_redemption_code_user', 'promotion_code_id', 'user_id'),
    )

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    promotion_id = Column(BigInteger, ForeignKey('promotion.id', ondelete='CASCADE'), nullable=False)
    promotion_code_id = Column(BigInteger, ForeignKey('promotion_code.id', ondelete='SET NULL'), nullable=True)
    user_id = Column(BigInteger, nullable=True)
    quote_id = Column(BigInteger, ForeignKey('quote.id'), nullable=False)
    used_at = Column(DateTime, nullable=False)
    amount_discounted = Column(Numeric(12, 2), nullable=False, default=0)

    promotion = relationship('Promotion')
    code = relationship('PromotionCode')

    def __repr__(self):
        return f"<PromotionRedemption(quote_id={self.quote_id}, promotion_id={self.promotion_id}, code_id={self.promotion_code_id})>"
