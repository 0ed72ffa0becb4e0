"""
Integration tests for the redemption ledger, including a concurrent race.
"""

import threading
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from quotedesk.database import get_engine
from quotedesk.exceptions import LimitExceededError, DuplicateRedemptionError, CodeNotEligibleError
from quotedesk.models import PromotionCode, PromotionRedemption, AuditLog, AuditAction
from quotedesk.services.pricing_types import PercentDiscount
from quotedesk.services.redemption_ledger import (
    commit_redemption, count_redemptions, release_redemption, sync_quote_redemptions, reconcile_code_uses
)

NOW = datetime(2026, 10, 18, 12, 0)


class TestCommitRedemption:
    """Tests for commit_redemption."""

    def test_commit_records_row_counter_and_audit(self, session, make_promotion, make_quote):
        promotion = make_promotion(value=10, codes=[{'code': 'SAVE20', 'max_redemptions': 5}])
        code = promotion.codes[0]
        quote = make_quote()

        commit_redemption(session, promotion.id, code.id, 3, quote.id, Decimal('20'), now=NOW)
        session.commit()

        assert session.get(PromotionCode, code.id).uses == 1
        row = session.query(PromotionRedemption).one()
        assert (row.quote_id, row.user_id, row.amount_discounted) == (quote.id, 3, Decimal('20.00'))
        assert session.query(AuditLog).filter(AuditLog.action == AuditAction.PROMOTION_REDEEMED).count() == 1

    def test_duplicate_commit_is_rejected(self, session, make_promotion, make_quote):
        promotion = make_promotion(value=10, codes=['SAVE20'])
        code_id = promotion.codes[0].id
        quote = make_quote()

        commit_redemption(session, promotion.id, code_id, None, quote.id, Decimal('5'), now=NOW)
        session.commit()

        with pytest.raises(DuplicateRedemptionError):
            commit_redemption(session, promotion.id, code_id, None, quote.id, Decimal('5'), now=NOW)
        session.rollback()

        assert session.get(PromotionCode, code_id).uses == 1
        assert count_redemptions(session, code_id) == 1

    def test_max_redemptions_is_enforced_at_commit(self, session, make_promotion, make_quote):
        promotion = make_promotion(value=10, codes=[{'code': 'ONCE', 'max_redemptions': 1}])
        code_id = promotion.codes[0].id
        first, second = make_quote(), make_quote()

        commit_redemption(session, promotion.id, code_id, None, first.id, Decimal('5'), now=NOW)
        session.commit()

        with pytest.raises(LimitExceededError) as exc:
            commit_redemption(session, promotion.id, code_id, None, second.id, Decimal('5'), now=NOW)
        session.rollback()

        assert exc.value.limit_name == 'max_redemptions'
        assert session.query(PromotionRedemption).count() == 1

    def test_max_per_user_is_enforced_at_commit(self, session, make_promotion, make_quote):
        promotion = make_promotion(value=10, codes=[{'code': 'PERUSER', 'max_per_user': 1}])
        code_id = promotion.codes[0].id
        first, second, third = make_quote(), make_quote(), make_quote()

        commit_redemption(session, promotion.id, code_id, 7, first.id, Decimal('5'), now=NOW)
        session.commit()

        with pytest.raises(LimitExceededError) as exc:
            commit_redemption(session, promotion.id, code_id, 7, second.id, Decimal('5'), now=NOW)
        session.rollback()
        assert exc.value.limit_name == 'max_per_user'

        # Another user is fine
        commit_redemption(session, promotion.id, code_id, 8, third.id, Decimal('5'), now=NOW)
        session.commit()
        assert session.get(PromotionCode, code_id).uses == 2

    def test_deactivated_code_is_rejected(self, session, make_promotion, make_quote):
        promotion = make_promotion(value=10, codes=[{'code': 'OFF', 'is_active': False}])
        with pytest.raises(CodeNotEligibleError):
            commit_redemption(session, promotion.id, promotion.codes[0].id, None, make_quote().id,
                              Decimal('5'), now=NOW)
        session.rollback()

    def test_promotion_without_code_records_a_row_only(self, session, make_promotion, make_quote):
        promotion = make_promotion(value=10)
        commit_redemption(session, promotion.id, None, None, make_quote().id, Decimal('5'), now=NOW)
        session.commit()
        assert session.query(PromotionRedemption).filter_by(promotion_code_id=None).count() == 1


class TestReleaseRedemption:
    """Tests for release_redemption / sync_quote_redemptions."""

    def test_release_gives_the_use_back(self, session, make_promotion, make_quote):
        promotion = make_promotion(value=10, codes=[{'code': 'ONCE', 'max_redemptions': 1}])
        promotion_id, code_id = promotion.id, promotion.codes[0].id
        first_id, second_id = make_quote().id, make_quote().id
        commit_redemption(session, promotion_id, code_id, None, first_id, Decimal('5'), now=NOW)
        session.commit()

        release_redemption(session, session.query(PromotionRedemption).one(), actor_id=4)
        session.commit()

        assert session.get(PromotionCode, code_id).uses == 0
        assert count_redemptions(session, code_id) == 0
        audit = session.query(AuditLog).filter(AuditLog.action == AuditAction.PROMOTION_RELEASED).one()
        assert (audit.resource_id, audit.actor_id) == (first_id, 4)

        commit_redemption(session, promotion_id, code_id, None, second_id, Decimal('5'), now=NOW)
        session.commit()
        assert session.get(PromotionCode, code_id).uses == 1

    def test_counter_never_goes_negative(self, session, make_promotion, make_quote):
        promotion = make_promotion(value=10, codes=['DRIFT'])
        code = promotion.codes[0]
        commit_redemption(session, promotion.id, code.id, None, make_quote().id, Decimal('5'), now=NOW)
        session.commit()
        code.uses = 0
        session.commit()

        release_redemption(session, session.query(PromotionRedemption).one())
        session.commit()

        assert session.get(PromotionCode, code.id).uses == 0

    def test_sync_keeps_refreshes_and_releases(self, session, make_promotion, make_quote):
        kept = make_promotion(name='Kept', value=10, codes=['KEPT'])
        dropped = make_promotion(name='Dropped', value=5, codes=['DROPPED'])
        kept_id, kept_code_id = kept.id, kept.codes[0].id
        dropped_id, dropped_code_id = dropped.id, dropped.codes[0].id
        quote_id = make_quote().id
        commit_redemption(session, kept_id, kept_code_id, None, quote_id, Decimal('20'), now=NOW)
        commit_redemption(session, dropped_id, dropped_code_id, None, quote_id, Decimal('9'), now=NOW)
        session.commit()

        still_applied = PercentDiscount(
            promotion_id=kept_id, name='Kept', code_id=kept_code_id,
            amount_discounted=Decimal('30'), lines=(), percent=Decimal('10'),
        )
        assert sync_quote_redemptions(session, quote_id, [still_applied]) == 1
        session.commit()

        row = session.query(PromotionRedemption).one()
        assert (row.promotion_id, row.amount_discounted) == (kept_id, Decimal('30.00'))
        assert session.get(PromotionCode, kept_code_id).uses == 1
        assert session.get(PromotionCode, dropped_code_id).uses == 0


class TestReconcile:
    """Tests for reconcile_code_uses."""

    def test_counter_is_rebuilt_from_rows(self, session, make_promotion, make_quote):
        promotion = make_promotion(value=10, codes=['DRIFT'])
        code = promotion.codes[0]
        commit_redemption(session, promotion.id, code.id, None, make_quote().id, Decimal('5'), now=NOW)
        session.commit()

        code.uses = 9
        session.commit()

        assert reconcile_code_uses(session) == 1
        assert session.get(PromotionCode, code.id).uses == 1
        assert reconcile_code_uses(session) == 0


class TestConcurrentRedemptions:
    """N concurrent commits against max_redemptions = k."""

    def test_exactly_k_commits_succeed(self, session, make_promotion, make_quote):
        attempts, limit = 6, 2
        promotion = make_promotion(value=10, codes=[{'code': 'RACE', 'max_redemptions': limit}])
        promotion_id, code_id = promotion.id, promotion.codes[0].id
        quote_ids = [make_quote().id for _ in range(attempts)]
        session.close()

        Session = sessionmaker(bind=get_engine())
        barrier = threading.Barrier(attempts)
        outcomes = []
        lock = threading.Lock()

        def worker(quote_id):
            thread_session = Session()
            barrier.wait()
            try:
                commit_redemption(thread_session, promotion_id, code_id, None, quote_id, Decimal('5'), now=NOW)
                thread_session.commit()
                outcome = 'committed'
            except LimitExceededError:
                thread_session.rollback()
                outcome = 'limit_exceeded'
            except Exception as e:
                thread_session.rollback()
                outcome = repr(e)
            finally:
                thread_session.close()
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker, args=(qid,)) for qid in quote_ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=120)

        assert sorted(outcomes) == ['committed'] * limit + ['limit_exceeded'] * (attempts - limit)
        assert session.get(PromotionCode, code_id).uses == limit
        assert count_redemptions(session, code_id) == limit
