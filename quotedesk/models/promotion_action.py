"""PromotionAction model - one effect of a promotion."""
import enum
from sqlalchemy import Column, BigInteger, String, Numeric, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from quotedesk.database import Base, BigIntId


class ActionType(str, enum.Enum):
    """Discount effect."""
    PERCENT = "percent"
    FIXED = "fixed"
    BOGO_FREE = "bogo_free"
    BOGO_PERCENT = "bogo_percent"


BOGO_ACTION_TYPES = frozenset({ActionType.BOGO_FREE.value, ActionType.BOGO_PERCENT.value})


class PromotionAction(Base):
    """
    Promotion action.

    ``value`` is a percentage for ``percent`` and an amount for ``fixed``.
    BOGO actions use buy/get SKUs and quantities; ``bogo_discount_value``
    is the percentage taken off the "get" units for ``bogo_percent``.
    """

    __tablename__ = 'promotion_action'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    promotion_id = Column(BigInteger, ForeignKey('promotion.id', ondelete='CASCADE'), nullable=False, index=True)
    action_type = Column(String(20), nullable=False, default=ActionType.PERCENT.value)
    value = Column(Numeric(12, 4), nullable=True)
    max_discount_amount = Column(Numeric(12, 2), nullable=True)

    # BOGO parameters
    buy_sku = Column(String(100), nullable=True)
    buy_qty = Column(Integer, nullable=True)
    get_sku = Column(String(100), nullable=True)
    get_qty = Column(Integer, nullable=True)
    bogo_discount_value = Column(Numeric(12, 4), nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    promotion = relationship('Promotion', back_populates='actions')

    def __repr__(self):
        return f"<PromotionAction(id={self.id}, type='{self.action_type}', value={self.value})>"

    @property
    def is_bogo(self):
        return self.action_type in BOGO_ACTION_TYPES
