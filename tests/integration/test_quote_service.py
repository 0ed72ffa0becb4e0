"""
Integration tests for quote drafting, editing, duplication and deletion.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from quotedesk.exceptions import BusinessLogicError, NotFoundError
from quotedesk.models import Quote, QuoteItem, PromotionCode, PromotionRedemption, AuditLog, AuditAction
from quotedesk.services.quote_service import (
    CatalogProduct, create_quote, get_quote, list_quotes, update_quote_items,
    duplicate_quote, delete_quote, generate_quote_number
)

NOW = datetime(2026, 10, 18, 12, 0)
CLIENT = {'id': 42, 'name': 'ACME', 'email': 'buyer@acme.test', 'city': 'Lyon', 'loyalty_tier': 'gold'}


def two_chairs():
    return [{'product_id': 'P1', 'quantity': 2}]


class TestCreateQuote:
    """Tests for create_quote."""

    def test_lines_and_client_are_snapshotted(self, session, catalog):
        quote_id = create_quote(session, CLIENT, two_chairs(), catalog, actor_id=3, now=NOW)

        quote = get_quote(session, quote_id)
        assert quote.quote_number == 'DEV-2026-0001'
        assert quote.status == 'draft'
        assert quote.user_id == 3
        assert quote.valid_until == date(2026, 11, 17)
        assert quote.client_snapshot == {'name': 'ACME', 'email': 'buyer@acme.test', 'city': 'Lyon'}

        item = quote.items[0]
        assert (item.product_name_snapshot, item.product_sku_snapshot) == ('Office chair', 'CHAIR')
        assert item.category_ids_snapshot == ['C1']
        assert (item.unit_price_ht_snapshot, item.tax_rate_snapshot) == (Decimal('100.00'), Decimal('20'))
        assert (quote.subtotal_ht, quote.total_tax, quote.total_ttc) == \
            (Decimal('200.00'), Decimal('40.00'), Decimal('240.00'))

        audit = [a.action for a in session.query(AuditLog).order_by(AuditLog.id)]
        assert audit == [AuditAction.QUOTE_CREATED, AuditAction.QUOTE_PRICED]

    def test_numbers_follow_each_other(self, session, catalog, make_quote):
        make_quote()  # DEV-2026-0001
        quote_id = create_quote(session, CLIENT, two_chairs(), catalog, now=NOW)
        assert get_quote(session, quote_id).quote_number == 'DEV-2026-0002'
        assert generate_quote_number(session, 2026) == 'DEV-2026-0003'
        assert generate_quote_number(session, 2027) == 'DEV-2027-0001'

    def test_line_overrides_win_over_the_catalog(self, session, catalog):
        quote_id = create_quote(
            session, CLIENT, [{'product_id': 'P2', 'quantity': 4, 'unit_price_ht': '20', 'tax_rate': '10'}],
            catalog, now=NOW
        )
        item = get_quote(session, quote_id).items[0]
        assert (item.unit_price_ht_snapshot, item.tax_rate_snapshot) == (Decimal('20.00'), Decimal('10'))
        assert item.line_total_ttc == Decimal('88.00')

    def test_created_with_a_code(self, session, catalog, make_promotion):
        make_promotion(value=10, codes=['SAVE10'])

        quote_id = create_quote(session, CLIENT, two_chairs(), catalog, actor_id=3, promo_code='save10', now=NOW)

        quote = get_quote(session, quote_id)
        assert quote.promo_code == 'SAVE10'
        assert (quote.discount_total, quote.total_ttc) == (Decimal('20.00'), Decimal('216.00'))
        assert session.query(PromotionCode).one().uses == 1

    @pytest.mark.parametrize('client, items, error', [
        ({'name': '  '}, [{'product_id': 'P1', 'quantity': 1}], BusinessLogicError),
        (CLIENT, [], BusinessLogicError),
        (CLIENT, [{'product_id': 'P1', 'quantity': 0}], BusinessLogicError),
        (CLIENT, [{'product_id': 'P1', 'quantity': 1, 'tax_rate': '120'}], BusinessLogicError),
        (CLIENT, [{'product_id': 'P404', 'quantity': 1}], NotFoundError),
    ])
    def test_invalid_input_creates_nothing(self, session, catalog, client, items, error):
        with pytest.raises(error):
            create_quote(session, client, items, catalog, now=NOW)
        assert session.query(Quote).count() == 0
        assert session.query(AuditLog).count() == 0

    def test_validity_must_follow_the_quote_date(self, session, catalog):
        with pytest.raises(BusinessLogicError):
            create_quote(session, CLIENT, two_chairs(), catalog, valid_until=NOW.date(), now=NOW)


class TestUpdateQuoteItems:
    """Tests for update_quote_items."""

    def test_prices_already_on_the_quote_stay_frozen(self, session, catalog):
        quote_id = create_quote(session, CLIENT, two_chairs(), catalog, now=NOW)
        catalog.products['P1'] = CatalogProduct('P1', 'Office chair', Decimal('120.00'), Decimal('20'), sku='CHAIR')

        update_quote_items(
            session, quote_id,
            [{'product_id': 'P1', 'quantity': 3}, {'product_id': 'P2', 'quantity': 1}],
            catalog, now=NOW
        )

        quote = get_quote(session, quote_id)
        assert [(i.product_id, i.unit_price_ht_snapshot) for i in quote.items] == \
            [('P1', Decimal('100.00')), ('P2', Decimal('25.00'))]
        assert quote.subtotal_ht == Decimal('325.00')
        assert session.query(QuoteItem).count() == 2

    def test_existing_code_is_kept_and_not_redeemed_again(self, session, catalog, make_promotion):
        make_promotion(value=10, codes=['SAVE10'])
        quote_id = create_quote(session, CLIENT, two_chairs(), catalog, promo_code='SAVE10', now=NOW)

        update_quote_items(session, quote_id, [{'product_id': 'P1', 'quantity': 3}], catalog, now=NOW)

        quote = get_quote(session, quote_id)
        assert quote.promo_code == 'SAVE10'
        assert quote.discount_total == Decimal('30.00')
        assert quote.items[0].discount_amount == Decimal('30.00')
        assert session.query(PromotionCode).one().uses == 1
        assert session.query(PromotionRedemption).one().amount_discounted == Decimal('30.00')

    def test_code_can_be_removed(self, session, catalog, make_promotion):
        make_promotion(value=10, codes=['SAVE10'])
        quote_id = create_quote(session, CLIENT, two_chairs(), catalog, promo_code='SAVE10', now=NOW)

        update_quote_items(session, quote_id, two_chairs(), catalog, promo_code=None, now=NOW)

        quote = get_quote(session, quote_id)
        assert quote.promo_code is None
        assert quote.applied_promotions == []
        assert quote.discount_total == 0
        assert session.query(PromotionCode).one().uses == 0
        assert session.query(PromotionRedemption).count() == 0
        released = session.query(AuditLog).filter(AuditLog.action == AuditAction.PROMOTION_RELEASED).one()
        assert released.resource_id == quote_id

    def test_released_code_can_be_used_by_another_quote(self, session, catalog, make_promotion):
        make_promotion(value=10, codes=[{'code': 'ONCE', 'max_redemptions': 1}])
        first_id = create_quote(session, CLIENT, two_chairs(), catalog, promo_code='ONCE', now=NOW)

        update_quote_items(session, first_id, two_chairs(), catalog, promo_code=None, now=NOW)
        second_id = create_quote(session, CLIENT, two_chairs(), catalog, promo_code='ONCE', now=NOW)

        assert get_quote(session, second_id).discount_total == Decimal('20.00')
        redemption = session.query(PromotionRedemption).one()
        assert redemption.quote_id == second_id
        assert session.query(PromotionCode).one().uses == 1

    def test_switching_to_another_code_releases_the_first(self, session, catalog, make_promotion):
        make_promotion(name='Ten', value=10, codes=['TEN'])
        make_promotion(name='Twenty', value=20, codes=['TWENTY'])
        quote_id = create_quote(session, CLIENT, two_chairs(), catalog, promo_code='TEN', now=NOW)

        update_quote_items(session, quote_id, two_chairs(), catalog, promo_code='TWENTY', now=NOW)

        assert get_quote(session, quote_id).discount_total == Decimal('40.00')
        uses = {c.code: c.uses for c in session.query(PromotionCode)}
        assert uses == {'TEN': 0, 'TWENTY': 1}
        assert [r.amount_discounted for r in session.query(PromotionRedemption)] == [Decimal('40.00')]

    def test_accepted_quote_is_locked(self, session, catalog, make_quote):
        quote_id = make_quote(status='accepted').id
        with pytest.raises(BusinessLogicError):
            update_quote_items(session, quote_id, two_chairs(), catalog, now=NOW)
        assert session.query(AuditLog).count() == 0


class TestDuplicateQuote:
    """Tests for duplicate_quote."""

    def test_copy_is_a_fresh_draft_without_the_code(self, session, catalog, make_promotion):
        make_promotion(value=10, codes=['SAVE10'])
        source_id = create_quote(session, CLIENT, two_chairs(), catalog, promo_code='SAVE10', now=NOW)

        copy_id = duplicate_quote(session, source_id, actor_id=8, now=NOW)

        copy = get_quote(session, copy_id)
        assert copy.quote_number == 'DEV-2026-0002'
        assert (copy.status, copy.user_id) == ('draft', 8)
        assert copy.client_snapshot == get_quote(session, source_id).client_snapshot
        assert [(i.product_id, i.quantity) for i in copy.items] == [('P1', 2)]
        assert copy.promo_code is None
        assert copy.applied_promotions == []
        assert copy.total_ttc == Decimal('240.00')
        assert session.query(PromotionCode).one().uses == 1


class TestDeleteQuote:
    """Tests for delete_quote / get_quote / list_quotes."""

    def test_draft_is_tombstoned(self, session, catalog):
        quote_id = create_quote(session, CLIENT, two_chairs(), catalog, now=NOW)

        delete_quote(session, quote_id, actor_id=1, now=NOW)

        with pytest.raises(NotFoundError):
            get_quote(session, quote_id)
        assert list_quotes(session) == []
        assert session.get(Quote, quote_id).deleted_at == NOW
        assert session.query(AuditLog).filter(AuditLog.action == AuditAction.QUOTE_DELETED).count() == 1

    def test_deleting_a_draft_gives_its_code_back(self, session, catalog, make_promotion):
        make_promotion(value=10, codes=[{'code': 'ONCE', 'max_redemptions': 1}])
        quote_id = create_quote(session, CLIENT, two_chairs(), catalog, promo_code='ONCE', now=NOW)

        delete_quote(session, quote_id, now=NOW)

        assert session.query(PromotionRedemption).count() == 0
        assert session.query(PromotionCode).one().uses == 0

    def test_sent_quote_cannot_be_deleted(self, session, make_quote):
        quote_id = make_quote(status='sent').id
        with pytest.raises(BusinessLogicError):
            delete_quote(session, quote_id, now=NOW)
        assert get_quote(session, quote_id).deleted_at is None

    def test_list_filters_by_status(self, session, make_quote):
        make_quote(status='sent')
        draft_id = make_quote().id
        assert [q.id for q in list_quotes(session, status='draft')] == [draft_id]
