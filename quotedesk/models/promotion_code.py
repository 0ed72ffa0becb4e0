"""PromotionCode model - optional gate on a promotion."""
from sqlalchemy import Column, BigInteger, String, Integer, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship, validates
from sqlalchemy.sql import func
from quotedesk.database import Base, BigIntId


def normalize_code(code):
    """Codes are stored and compared upper-cased and trimmed."""
    if code is None:
        return None
    normalized = code.strip().upper()
    return normalized or None


class PromotionCode(Base):
    """
    Promotion code.

    ``uses`` is a cached counter; the redemption rows are the source of
    truth and the ledger keeps both in step.
    """

    __tablename__ = 'promotion_code'
    __table_args__ = (
        Index('ix_promotion_code_promotion_active', 'promotion_id', 'is_active'),
    )

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    promotion_id = Column(BigInteger, ForeignKey('promotion.id', ondelete='CASCADE'), nullable=False)
    code = Column(String(64), nullable=False, unique=True)
    max_redemptions = Column(Integer, nullable=True)  # None = unlimited
    max_per_user = Column(Integer, nullable=True)  # None = unlimited
    uses = Column(Integer, nullable=False, default=0)
    starts_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    promotion = relationship('Promotion', back_populates='codes')

    @validates('code')
    def _normalize(self, key, value):
        return normalize_code(value)

    def __repr__(self):
        return f"<PromotionCode(id={self.id}, code='{self.code}', uses={self.uses}/{self.max_redemptions})>"

    def is_valid_at(self, moment) -> bool:
        """Active and inside its own window."""
        if not self.is_active:
            return False
        if self.starts_at and moment < self.starts_at:
            return False
        if self.ends_at and moment > self.ends_at:
            return False
        return True
