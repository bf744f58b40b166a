from prometheus_client import Counter, Histogram
# Prometheus metrics definitions

# Facebook Graph API failures by upstream status
graph_api_errors_total = Counter(
    "graph_api_errors_total", "Facebook Graph API errors", ["status"]
)

# Ad preview served from an alternate ad_format
ad_preview_fallback_total = Counter(
    "ad_preview_fallback_total", "Ad previews served from a fallback format"
)

# Billing related metrics
stripe_subscription_errors_total = Counter(
    "stripe_subscription_errors_total",
    "Per-account subscription operations that failed at Stripe",
    ["operation"],
)

usage_reports_total = Counter(
    "usage_reports_total", "Metered usage quantities pushed to Stripe"
)

stripe_webhook_events_total = Counter(
    "stripe_webhook_events_total", "Stripe webhook events received", ["type"]
)

# Image proxy rejects (host or content type)
image_proxy_reject_total = Counter(
    "image_proxy_reject_total", "Rejected image proxy requests", ["reason"]
)

creative_scores_saved_total = Counter(
    "creative_scores_saved_total", "Creative scores stored or updated"
)

# n8n forwarding latency; workflows can take tens of seconds
_n8n_buckets = (
    0.5,
    1.0,
    2.0,
    5.0,
    10.0,
    30.0,
)

n8n_forward_seconds = Histogram(
    "n8n_forward_seconds", "Creative analysis forwarding latency", buckets=_n8n_buckets
)

__all__ = [
    "graph_api_errors_total",
    "ad_preview_fallback_total",
    "stripe_subscription_errors_total",
    "usage_reports_total",
    "stripe_webhook_events_total",
    "image_proxy_reject_total",
    "creative_scores_saved_total",
    "n8n_forward_seconds",
]
