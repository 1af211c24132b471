"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name, documentation, labelnames=()):
    """Create a counter, reusing the registered one when the module is re-imported"""
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Contact pipeline: one increment per audit status written
contact_submissions_counter = _counter(
    'sunroad_contact_submissions',
    'Contact form submissions by recorded status',
    ['status']
)

# Stripe webhook
stripe_webhook_events_counter = _counter(
    'sunroad_stripe_webhook_events',
    'Stripe webhook events by type and outcome',
    ['event_type', 'outcome']
)

# Request rate limiting
rate_limited_requests_counter = _counter(
    'sunroad_rate_limited_requests',
    'Requests rejected by the sliding-window rate limiter',
    ['tier']
)
