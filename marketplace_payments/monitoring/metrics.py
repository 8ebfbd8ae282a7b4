"""
Prometheus metrics for payment gateway and webhook monitoring.

Tracks:
- Gateway request counts by gateway and outcome
- Gateway call duration
- Webhook notifications by reconciliation outcome
- Activated marketplace features
"""
from prometheus_client import Counter, Histogram

# Gateway metrics
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total payment creation requests sent to the gateway",
    ["gateway", "outcome"],  # outcome: success or a GatewayErrorType value
)

gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Payment gateway call duration in seconds",
    ["gateway"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

# Webhook metrics
webhook_notifications_total = Counter(
    "webhook_notifications_total",
    "Total payment notifications received",
    ["outcome"],  # success, failed, skipped, malformed
)

# Feature activation metrics
features_activated_total = Counter(
    "features_activated_total",
    "Total feature grants applied to products",
    ["feature_type"],
)

premium_extensions_total = Counter(
    "premium_extensions_total",
    "Total premium subscription extensions applied",
)
