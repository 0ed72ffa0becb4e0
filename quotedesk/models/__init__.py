"""Models package - exports all SQLAlchemy models."""
# Sales documents
from quotedesk.models.quote import Quote, QuoteStatus, EDITABLE_STATUSES
from quotedesk.models.quote_item import QuoteItem
from quotedesk.models.quote_status_history import QuoteStatusHistory
from quotedesk.models.order import Order, OrderStatus
from quotedesk.models.order_item import OrderItem

# Promotions
from quotedesk.models.promotion import (
    Promotion, PromotionType, ApplyScope, PromotionCategory, PromotionProduct,
    ALL_DAYS_MASK, weekday_bit
)
from quotedesk.models.promotion_action import PromotionAction, ActionType, BOGO_ACTION_TYPES
from quotedesk.models.promotion_code import PromotionCode, normalize_code
from quotedesk.models.promotion_redemption import PromotionRedemption

# Audit / alerts
from quotedesk.models.audit_log import AuditLog, AuditAction
from quotedesk.models.system_alert import SystemAlert

__all__ = [
    # Sales documents
    'Quote', 'QuoteStatus', 'EDITABLE_STATUSES', 'QuoteItem', 'QuoteStatusHistory',
    'Order', 'OrderStatus', 'OrderItem',
    # Promotions
    'Promotion', 'PromotionType', 'ApplyScope', 'PromotionCategory', 'PromotionProduct',
    'ALL_DAYS_MASK', 'weekday_bit',
    'PromotionAction', 'ActionType', 'BOGO_ACTION_TYPES',
    'PromotionCode', 'normalize_code', 'PromotionRedemption',
    # Audit / alerts
    'AuditLog', 'AuditAction', 'SystemAlert',
]
