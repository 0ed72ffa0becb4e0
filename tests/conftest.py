import pytest
from datetime import date, timedelta
from decimal import Decimal

from config import TestingConfig
from quotedesk import create_app
from quotedesk.database import create_all, drop_all, get_session
from quotedesk.models import (
    Quote, QuoteItem, QuoteStatus, Promotion, PromotionAction, PromotionCode,
    PromotionCategory, PromotionProduct
)
from quotedesk.services.quote_service import CatalogProduct
from quotedesk.services.quote_totals import compute_line_totals


@pytest.fixture(scope='function')
def app(tmp_path):
    """Create application instance bound to a fresh SQLite file."""

    class Config(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'quotedesk_test.db'}"

    app = create_app(Config)
    create_all()
    yield app
    get_session().remove()
    drop_all()


@pytest.fixture(scope='function')
def session(app):
    """Create database session for testing."""
    session = get_session()
    yield session
    session.rollback()
    session.close()


class InMemoryCatalog:
    """ProductCatalog backed by a dict."""

    def __init__(self, products):
        self.products = {p.product_id: p for p in products}

    def get_product(self, product_id):
        return self.products.get(str(product_id))


@pytest.fixture(scope='function')
def catalog():
    return InMemoryCatalog([
        CatalogProduct('P1', 'Office chair', Decimal('100.00'), Decimal('20'), sku='CHAIR', category_ids=['C1']),
        CatalogProduct('P2', 'Desk lamp', Decimal('25.00'), Decimal('20'), sku='LAMP', category_ids=['C2']),
        CatalogProduct('P3', 'Notebook', Decimal('4.50'), Decimal('5.5'), sku='NOTE', category_ids=['C2', 'C3']),
    ])


@pytest.fixture(scope='function')
def make_promotion(session):
    """Factory: promotion + primary action (+ codes, targets), committed."""

    def _make(name='Promo', action_type='percent', value=None, priority=100, codes=(),
              category_ids=(), product_ids=(), max_discount_amount=None, **kwargs):
        action_fields = {
            key: kwargs.pop(key)
            for key in ('buy_sku', 'buy_qty', 'get_sku', 'get_qty', 'bogo_discount_value')
            if key in kwargs
        }
        promotion = Promotion(name=name, priority=priority, **kwargs)
        promotion.actions.append(PromotionAction(
            action_type=action_type,
            value=Decimal(str(value)) if value is not None else None,
            max_discount_amount=max_discount_amount,
            **action_fields
        ))
        for code in codes:
            if isinstance(code, dict):
                promotion.codes.append(PromotionCode(**code))
            else:
                promotion.codes.append(PromotionCode(code=code))
        for category_id in category_ids:
            promotion.category_targets.append(PromotionCategory(category_id=category_id))
        for product in product_ids:
            if isinstance(product, dict):
                promotion.product_targets.append(PromotionProduct(**product))
            else:
                promotion.product_targets.append(PromotionProduct(product_id=product))
        session.add(promotion)
        session.commit()
        return promotion

    return _make


@pytest.fixture(scope='function')
def make_quote(session):
    """
    Factory: quote with lines, committed.

    lines: (product_id, sku, category_ids, quantity, unit_price_ht, tax_rate)
    """
    counter = {'n': 0}

    def _make(lines=None, status=QuoteStatus.DRAFT.value, valid_until=None, user_id=1):
        counter['n'] += 1
        if lines is None:
            lines = [('P1', 'CHAIR', ['C1'], 2, '100.00', '20')]
        quote = Quote(
            quote_number=f'DEV-2026-{counter["n"]:04d}',
            user_id=user_id,
            status=status,
            quote_date=date.today(),
            valid_until=valid_until or date.today() + timedelta(days=30),
            client_snapshot={'name': 'ACME'},
            applied_promotions=[],
        )
        for position, (product_id, sku, categories, quantity, price, tax) in enumerate(lines):
            total_ht, tax_amount, ttc = compute_line_totals(quantity, price, tax)
            quote.items.append(QuoteItem(
                product_id=product_id,
                product_name_snapshot=f'Product {product_id}',
                product_sku_snapshot=sku,
                category_ids_snapshot=list(categories),
                unit_price_ht_snapshot=Decimal(str(price)),
                tax_rate_snapshot=Decimal(str(tax)),
                quantity=Decimal(str(quantity)),
                line_total_ht=total_ht,
                line_tax_amount=tax_amount,
                line_total_ttc=ttc,
                sort_order=position,
            ))
        session.add(quote)
        session.commit()
        return quote

    return _make
