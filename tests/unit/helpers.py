"""Transient (never persisted) objects for the pure pricing components."""
from decimal import Decimal

from quotedesk.models import Promotion, PromotionAction, PromotionCategory, PromotionProduct
from quotedesk.services.pricing_types import PricingLine, EligibilityResult


def promo(promotion_id, priority=100, action_type='percent', value=None, apply_scope='order',
          category_ids=(), product_ids=(), is_exclusive=False, stop_further_processing=False,
          max_discount_amount=None, **action_fields):
    promotion = Promotion(
        id=promotion_id,
        name=f'Promo {promotion_id}',
        priority=priority,
        apply_scope=apply_scope,
        is_exclusive=is_exclusive,
        stop_further_processing=stop_further_processing,
        is_active=True,
    )
    promotion.actions.append(PromotionAction(
        id=promotion_id,
        promotion_id=promotion_id,
        action_type=action_type,
        value=Decimal(str(value)) if value is not None else None,
        max_discount_amount=Decimal(str(max_discount_amount)) if max_discount_amount is not None else None,
        **action_fields
    ))
    for category_id in category_ids:
        promotion.category_targets.append(PromotionCategory(category_id=category_id))
    for product_id in product_ids:
        promotion.product_targets.append(PromotionProduct(product_id=product_id))
    return promotion


def eligible(promotion, code_id=None):
    return EligibilityResult(promotion=promotion, eligible=True, code_id=code_id)


def line(index, quantity, price, product_id='P1', sku=None, categories=(), tax_rate='20'):
    return PricingLine(
        index=index,
        product_id=product_id,
        sku=sku,
        category_ids=frozenset(categories),
        quantity=Decimal(str(quantity)),
        unit_price_ht=Decimal(str(price)),
        tax_rate=Decimal(str(tax_rate)),
    )
