"""
Integration tests for the structural promotion filter.
"""

from datetime import datetime, timedelta

from quotedesk.services.promotion_catalog import load_active_promotions, is_structurally_active

# A Sunday
NOW = datetime(2026, 10, 18, 12, 0)
SUNDAY = 0b0000001
MONDAY = 0b0000010


def names(promotions):
    return [p.name for p in promotions]


class TestLoadActivePromotions:
    """Tests for load_active_promotions."""

    def test_ordered_by_priority_then_id(self, session, make_promotion):
        make_promotion(name='late', priority=50, value=5)
        make_promotion(name='first', priority=10, value=5)
        make_promotion(name='tie', priority=50, value=5)

        assert names(load_active_promotions(session, NOW)) == ['first', 'late', 'tie']

    def test_inactive_and_deleted_are_excluded(self, session, make_promotion):
        make_promotion(name='off', value=5, is_active=False)
        make_promotion(name='gone', value=5, deleted_at=NOW - timedelta(days=1))
        make_promotion(name='on', value=5)

        assert names(load_active_promotions(session, NOW)) == ['on']

    def test_date_window(self, session, make_promotion):
        make_promotion(name='future', value=5, starts_at=NOW + timedelta(hours=1))
        make_promotion(name='past', value=5, ends_at=NOW - timedelta(seconds=1))
        make_promotion(name='current', value=5, starts_at=NOW - timedelta(days=1), ends_at=NOW + timedelta(days=1))

        assert names(load_active_promotions(session, NOW)) == ['current']

    def test_weekday_mask(self, session, make_promotion):
        make_promotion(name='sunday', value=5, days_of_week=SUNDAY)
        make_promotion(name='monday', value=5, days_of_week=MONDAY)
        make_promotion(name='no-bits', value=5, days_of_week=0)
        make_promotion(name='null-mask', value=5, days_of_week=None)

        assert names(load_active_promotions(session, NOW)) == ['sunday', 'no-bits', 'null-mask']

    def test_single_object_predicate(self, session, make_promotion):
        promotion = make_promotion(name='monday', value=5, days_of_week=MONDAY)
        assert is_structurally_active(promotion, NOW) is False
        assert is_structurally_active(promotion, NOW + timedelta(days=1)) is True
