"""Quote service for drafting, editing and pricing sales quotes."""

from dataclasses import dataclass, field
from datetime import datetime, date, timedelta
from decimal import Decimal
from typing import Dict, Any, List, Optional, Protocol

from sqlalchemy.orm import Session

from quotedesk.models import Quote, QuoteItem, QuoteStatus, AuditAction
from quotedesk.exceptions import BusinessLogicError, NotFoundError
from quotedesk.services.audit_service import log_action
from quotedesk.services.promotion_pricing_service import price_and_store_quote, record_applied_metrics
from quotedesk.services.quote_totals import compute_line_totals
from quotedesk.services.redemption_ledger import sync_quote_redemptions
from quotedesk.utils.money import to_decimal
from quotedesk.utils.numbering import next_document_number

# Client fields frozen on the quote
CLIENT_SNAPSHOT_FIELDS = ('name', 'company', 'email', 'phone', 'address', 'postal_code', 'city', 'country', 'vat_number')

# Only these may be deleted (tombstoned)
DELETABLE_STATUSES = frozenset({QuoteStatus.DRAFT.value, QuoteStatus.REJECTED.value})


@dataclass(frozen=True)
class CatalogProduct:
    """Product data as read from the catalog at quote time."""
    product_id: str
    name: str
    unit_price_ht: Decimal
    tax_rate: Decimal
    sku: Optional[str] = None
    description: Optional[str] = None
    category_ids: List[str] = field(default_factory=list)


class ProductCatalog(Protocol):
    """Catalog collaborator; only consulted when lines are created or edited."""

    def get_product(self, product_id: str) -> Optional[CatalogProduct]:
        ...


def generate_quote_number(session: Session, year: int = None, prefix: str = 'DEV') -> str:
    """Generate the next quote number of the year (DEV-2026-0001)."""
    if year is None:
        year = date.today().year
    return next_document_number(session, Quote.quote_number, prefix, year)


def _client_snapshot(client: Dict[str, Any]) -> Dict[str, Any]:
    return {key: client.get(key) for key in CLIENT_SNAPSHOT_FIELDS if client.get(key) is not None}


def _build_items(items_data: List[Dict[str, Any]], catalog: ProductCatalog,
                 frozen_prices: Dict[str, Any] = None) -> List[QuoteItem]:
    """
    Snapshot lines from the catalog.

    Per-line ``unit_price_ht`` / ``tax_rate`` overrides win over the
    catalog; ``frozen_prices`` (product_id -> (price, tax)) keeps the prices
    already on a quote for products that stay on it.
    """
    if not items_data:
        raise BusinessLogicError('A quote needs at least one line.')

    frozen_prices = frozen_prices or {}
    built = []
    for position, data in enumerate(items_data):
        product_id = str(data.get('product_id', '')).strip()
        product = catalog.get_product(product_id) if product_id else None
        if not product:
            raise NotFoundError(f'Product {product_id} not found.')

        quantity = to_decimal(data.get('quantity'))
        if quantity <= 0:
            raise BusinessLogicError(f'Invalid quantity for product {product.name}.')

        frozen_price, frozen_tax = frozen_prices.get(product_id, (None, None))
        price = to_decimal(data['unit_price_ht']) if data.get('unit_price_ht') is not None else (
            frozen_price if frozen_price is not None else to_decimal(product.unit_price_ht)
        )
        tax_rate = to_decimal(data['tax_rate']) if data.get('tax_rate') is not None else (
            frozen_tax if frozen_tax is not None else to_decimal(product.tax_rate)
        )
        if price < 0 or tax_rate < 0 or tax_rate > 100:
            raise BusinessLogicError(f'Invalid price or tax rate for product {product.name}.')

        total_ht, tax, ttc = compute_line_totals(quantity, price, tax_rate)
        built.append(QuoteItem(
            product_id=product_id,
            product_name_snapshot=product.name,
            product_description_snapshot=product.description,
            product_sku_snapshot=product.sku,
            category_ids_snapshot=[str(c) for c in (product.category_ids or [])],
            unit_price_ht_snapshot=price,
            tax_rate_snapshot=tax_rate,
            quantity=quantity,
            line_total_ht=total_ht,
            line_tax_amount=tax,
            line_total_ttc=ttc,
            discount_amount=Decimal('0.00'),
            sort_order=position,
        ))
    return built


def create_quote(session: Session, client: Dict[str, Any], items: List[Dict[str, Any]],
                 catalog: ProductCatalog, actor_id: int = None, **kwargs) -> int:
    """
    Create a draft quote, snapshot its lines and price it.

    kwargs: promo_code, valid_days (default 30), valid_until, quote_date,
    currency_code, notes, internal_notes, terms_conditions, prefix, now.
    """
    if not client or not (client.get('name') or '').strip():
        raise BusinessLogicError('Client name required.')

    now = kwargs.get('now') or datetime.now()
    quote_date = kwargs.get('quote_date') or now.date()
    valid_until = kwargs.get('valid_until') or quote_date + timedelta(days=kwargs.get('valid_days', 30))
    if valid_until <= quote_date:
        raise BusinessLogicError('Validity date must be after the quote date.')

    try:
        session.begin_nested()

        quote = Quote(
            quote_number=generate_quote_number(session, quote_date.year, kwargs.get('prefix', 'DEV')),
            client_id=client.get('id'),
            user_id=actor_id,
            status=QuoteStatus.DRAFT.value,
            quote_date=quote_date,
            valid_until=valid_until,
            client_snapshot=_client_snapshot(client),
            currency_code=kwargs.get('currency_code') or 'EUR',
            notes=kwargs.get('notes'),
            internal_notes=kwargs.get('internal_notes'),
            terms_conditions=kwargs.get('terms_conditions'),
            applied_promotions=[],
        )
        quote.items = _build_items(items, catalog)
        session.add(quote)
        session.flush()
        new_quote_id = quote.id

        log_action(
            session,
            AuditAction.QUOTE_CREATED,
            resource_type='quote',
            resource_id=quote.id,
            actor_id=actor_id,
            details={'quote_number': quote.quote_number, 'lines': len(quote.items)}
        )
        result = price_and_store_quote(session, quote, kwargs.get('promo_code'), actor_id=actor_id, now=now)

        session.commit()
    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e
    except Exception:
        session.rollback()
        raise

    record_applied_metrics(result)
    return new_quote_id


def get_quote(session: Session, quote_id: int) -> Quote:
    """Load a quote; tombstoned quotes are not found."""
    quote = session.query(Quote).filter(Quote.id == quote_id, Quote.deleted_at.is_(None)).first()
    if not quote:
        raise NotFoundError(f'Quote {quote_id} not found.')
    return quote


def list_quotes(session: Session, status: str = None, client_id: int = None,
                limit: int = 50, offset: int = 0) -> List[Quote]:
    query = session.query(Quote).filter(Quote.deleted_at.is_(None))
    if status:
        query = query.filter(Quote.status == status)
    if client_id:
        query = query.filter(Quote.client_id == client_id)
    return query.order_by(Quote.quote_date.desc(), Quote.id.desc()).limit(limit).offset(offset).all()


def update_quote_items(session: Session, quote_id: int, items: List[Dict[str, Any]],
                       catalog: ProductCatalog, actor_id: int = None, **kwargs) -> None:
    """
    Replace the lines of an editable quote and re-price it.

    Products already on the quote keep their frozen price and tax rate
    unless the line overrides them. kwargs: promo_code (default: the code
    already on the quote), valid_until, notes, internal_notes,
    terms_conditions, now.
    """
    now = kwargs.get('now') or datetime.now()
    try:
        session.begin_nested()
        quote = session.query(Quote).filter(
            Quote.id == quote_id,
            Quote.deleted_at.is_(None)
        ).with_for_update().first()

        if not quote:
            raise NotFoundError(f'Quote {quote_id} not found.')
        if not quote.is_editable:
            raise BusinessLogicError(f'Quote {quote.quote_number} cannot be edited ({quote.status}).')

        frozen = {
            item.product_id: (to_decimal(item.unit_price_ht_snapshot), to_decimal(item.tax_rate_snapshot))
            for item in quote.items
        }
        quote.items = _build_items(items, catalog, frozen_prices=frozen)

        # Previous pricing no longer matches the lines
        quote.applied_promotions = []

        if 'valid_until' in kwargs:
            quote.valid_until = kwargs['valid_until']
        for key in ('notes', 'internal_notes', 'terms_conditions'):
            if key in kwargs:
                setattr(quote, key, kwargs[key].strip() if kwargs[key] else None)
        session.flush()

        log_action(
            session,
            AuditAction.QUOTE_UPDATED,
            resource_type='quote',
            resource_id=quote.id,
            actor_id=actor_id,
            details={'lines': len(quote.items)}
        )
        code = kwargs['promo_code'] if 'promo_code' in kwargs else quote.promo_code
        result = price_and_store_quote(session, quote, code, actor_id=actor_id, now=now)

        session.commit()
    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e
    except Exception:
        session.rollback()
        raise

    record_applied_metrics(result)


def duplicate_quote(session: Session, quote_id: int, actor_id: int = None, **kwargs) -> int:
    """
    Copy a quote (lines and client snapshot) into a new draft.

    Promotions are not copied: the copy is re-priced on its own and any
    code has to be supplied again.
    """
    now = kwargs.get('now') or datetime.now()
    source = get_quote(session, quote_id)
    today = now.date()

    try:
        session.begin_nested()
        copy = Quote(
            quote_number=generate_quote_number(session, today.year, kwargs.get('prefix', 'DEV')),
            client_id=source.client_id,
            user_id=actor_id,
            status=QuoteStatus.DRAFT.value,
            quote_date=today,
            valid_until=today + timedelta(days=kwargs.get('valid_days', 30)),
            client_snapshot=dict(source.client_snapshot) if source.client_snapshot else None,
            currency_code=source.currency_code,
            notes=source.notes,
            internal_notes=source.internal_notes,
            terms_conditions=source.terms_conditions,
            applied_promotions=[],
        )
        copy.items = [
            QuoteItem(
                product_id=item.product_id,
                product_name_snapshot=item.product_name_snapshot,
                product_description_snapshot=item.product_description_snapshot,
                product_sku_snapshot=item.product_sku_snapshot,
                category_ids_snapshot=list(item.category_ids_snapshot or []),
                unit_price_ht_snapshot=item.unit_price_ht_snapshot,
                tax_rate_snapshot=item.tax_rate_snapshot,
                quantity=item.quantity,
                sort_order=item.sort_order,
            )
            for item in source.items
        ]
        session.add(copy)
        session.flush()
        new_quote_id = copy.id

        log_action(
            session,
            AuditAction.QUOTE_CREATED,
            resource_type='quote',
            resource_id=copy.id,
            actor_id=actor_id,
            details={'quote_number': copy.quote_number, 'duplicated_from': source.id}
        )
        result = price_and_store_quote(session, copy, None, actor_id=actor_id, now=now)

        session.commit()
    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e
    except Exception:
        session.rollback()
        raise

    record_applied_metrics(result)
    return new_quote_id


def delete_quote(session: Session, quote_id: int, actor_id: int = None, now: datetime = None) -> None:
    """Tombstone a draft or rejected quote, releasing the codes it redeemed."""
    if now is None:
        now = datetime.now()
    try:
        session.begin_nested()
        quote = session.query(Quote).filter(
            Quote.id == quote_id,
            Quote.deleted_at.is_(None)
        ).with_for_update().first()

        if not quote:
            raise NotFoundError(f'Quote {quote_id} not found.')
        if quote.status not in DELETABLE_STATUSES:
            raise BusinessLogicError('Only draft or rejected quotes can be deleted.')

        sync_quote_redemptions(session, quote.id, [], actor_id=actor_id)
        quote.deleted_at = now
        log_action(
            session,
            AuditAction.QUOTE_DELETED,
            resource_type='quote',
            resource_id=quote.id,
            actor_id=actor_id,
            details={'quote_number': quote.quote_number}
        )
        session.commit()
    except (BusinessLogicError, NotFoundError) as e:
        session.rollback()
        raise e
    except Exception:
        session.rollback()
        raise
