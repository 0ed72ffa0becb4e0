"""
Prometheus metrics for the pricing engine and the quote lifecycle.

Exposes /metrics for the monitoring system. This endpoint should be
restricted to the internal network.
"""
from flask import Blueprint, Response
from prometheus_client import Counter, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY
import os

metrics_bp = Blueprint('metrics', __name__)

# Check if running in multi-process mode (Gunicorn)
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

# Use multiprocess registry in production with Gunicorn
if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY

promotions_applied_total = Counter(
    'quotedesk_promotions_applied_total',
    'Promotions applied to persisted quotes',
    ['action_type'],
    registry=registry if not MULTIPROCESS_MODE else None
)

promotion_redemptions_total = Counter(
    'quotedesk_promotion_redemptions_total',
    'Redemption commits and releases by outcome',
    ['outcome'],  # committed, released, limit_exceeded, duplicate
    registry=registry if not MULTIPROCESS_MODE else None
)

quote_transitions_total = Counter(
    'quotedesk_quote_transitions_total',
    'Quote status transitions',
    ['from_status', 'to_status'],
    registry=registry if not MULTIPROCESS_MODE else None
)

quote_transitions_rejected_total = Counter(
    'quotedesk_quote_transitions_rejected_total',
    'Quote status changes refused by the transition table',
    ['from_status', 'to_status'],
    registry=registry if not MULTIPROCESS_MODE else None
)

orders_created_total = Counter(
    'quotedesk_orders_created_total',
    'Orders created from accepted quotes',
    registry=registry if not MULTIPROCESS_MODE else None
)


@metrics_bp.route('/metrics')
def metrics():
    """
    Prometheus metrics endpoint.

    SECURITY NOTE: not authenticated, restrict by network rules.
    """
    data = generate_latest(registry)
    return Response(data, mimetype=CONTENT_TYPE_LATEST)
