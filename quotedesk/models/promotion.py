"""Promotion model - a discount rule definition."""
import enum
from sqlalchemy import (
    Column, BigInteger, String, Numeric, Integer, Boolean, DateTime, Text,
    ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from quotedesk.database import Base, BigIntId
from quotedesk.models.promotion_code import normalize_code


class PromotionType(str, enum.Enum):
    """Intended shape of the promotion (advisory, see ApplyScope)."""
    ORDER = "order"
    CATEGORY = "category"
    PRODUCT = "product"
    BOGO = "bogo"


class ApplyScope(str, enum.Enum):
    """Targeting dimension used for eligibility and discount base."""
    ORDER = "order"
    CATEGORY = "category"
    PRODUCT = "product"


# Weekday bits: bit 0 = Sunday ... bit 6 = Saturday
ALL_DAYS_MASK = 0b1111111


def weekday_bit(moment) -> int:
    """Bit of the days_of_week mask matching a date/datetime."""
    # date.weekday(): Monday=0 ... Sunday=6
    return 1 << ((moment.weekday() + 1) % 7)


class Promotion(Base):
    """
    Promotion (discount rule).

    ``priority``: lower number is evaluated first.
    ``is_exclusive``: once applied, no other promotion applies.
    ``stop_further_processing``: once applied, lower priorities are not evaluated.
    ``days_of_week``: 7-bit mask; no bit set means every day.
    """

    __tablename__ = 'promotion'
    __table_args__ = (
        Index('ix_promotion_active_priority', 'is_active', 'priority'),
        Index('ix_promotion_window', 'starts_at', 'ends_at'),
    )

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    type = Column(String(20), nullable=False, default=PromotionType.ORDER.value)
    apply_scope = Column(String(20), nullable=False, default=ApplyScope.ORDER.value)
    priority = Column(Integer, nullable=False, default=100)
    is_exclusive = Column(Boolean, nullable=False, default=False)
    stop_further_processing = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    # Validity window
    starts_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)
    days_of_week = Column(Integer, nullable=True)

    # Global conditions (HT)
    min_subtotal = Column(Numeric(12, 2), nullable=True)
    min_quantity = Column(Integer, nullable=True)

    created_by = Column(BigInteger, nullable=True)
    updated_by = Column(BigInteger, nullable=True)
    deleted_at = Column(DateTime, nullable=True)  # tombstone
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    actions = relationship(
        'PromotionAction', back_populates='promotion',
        cascade='all, delete-orphan', order_by='PromotionAction.id'
    )
    codes = relationship(
        'PromotionCode', back_populates='promotion',
        cascade='all, delete-orphan', order_by='PromotionCode.id'
    )
    category_targets = relationship('PromotionCategory', cascade='all, delete-orphan')
    product_targets = relationship('PromotionProduct', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<Promotion(id={self.id}, name='{self.name}', priority={self.priority}, scope='{self.apply_scope}')>"

    @property
    def primary_action(self):
        """First action by id (one action per promotion in practice)."""
        return self.actions[0] if self.actions else None

    @property
    def target_category_ids(self):
        return {str(t.category_id) for t in self.category_targets}

    @property
    def target_product_ids(self):
        return {str(t.product_id) for t in self.product_targets}

    @property
    def target_skus(self):
        return {normalize_code(t.sku) for t in self.product_targets if normalize_code(t.sku)}

    @property
    def is_code_gated(self):
        return len(self.codes) > 0

    def runs_on(self, moment) -> bool:
        """days_of_week check; an empty mask means every day."""
        if not self.days_of_week:
            return True
        return bool(self.days_of_week & weekday_bit(moment))


class PromotionCategory(Base):
    """Category targeted by a category-scoped promotion."""

    __tablename__ = 'promotion_category'
    __table_args__ = (UniqueConstraint('promotion_id', 'category_id', name='uq_promotion_category'),)

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    promotion_id = Column(BigInteger, ForeignKey('promotion.id', ondelete='CASCADE'), nullable=False)
    category_id = Column(String(64), nullable=False)


class PromotionProduct(Base):
    """Product targeted by a product-scoped promotion."""

    __tablename__ = 'promotion_product'
    __table_args__ = (UniqueConstraint('promotion_id', 'product_id', name='uq_promotion_product'),)

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    promotion_id = Column(BigInteger, ForeignKey('promotion.id', ondelete='CASCADE'), nullable=False)
    product_id = Column(String(64), nullable=False)
    sku = Column(String(100), nullable=True)  # products also match by SKU
