"""
Prometheus metrics for the billing service.

Metrics tracked:
- Request latency (histogram) and count (counter) per endpoint
- Active requests (gauge)
- Webhook deliveries by event type and outcome (counter)
- Webhook processing latency (histogram)
- Subscription transitions by transition and result (counter)
- Quota decisions by plan and decision (counter)
- Pages recorded by plan (counter)
- Error rates (counter) by error type

Integration:
- Exposed via /metrics endpoint (Prometheus scraping)
- Labels never carry account ids to keep cardinality bounded
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# ============================================================================
# REQUEST METRICS
# ============================================================================

http_request_duration_seconds = Histogram(
    "pagemeter_http_request_duration_seconds",
    "HTTP request latency in seconds",
    labelnames=["method", "endpoint", "status_code"],
    buckets=(
        0.001,  # 1ms
        0.005,  # 5ms
        0.010,  # 10ms
        0.025,  # 25ms
        0.050,  # 50ms
        0.100,  # 100ms
        0.250,  # 250ms
        0.500,  # 500ms
        1.000,  # 1s
        2.500,  # 2.5s
        5.000,  # 5s
    ),
)

http_requests_total = Counter(
    "pagemeter_http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status_code"],
)

http_requests_active = Gauge(
    "pagemeter_http_requests_active",
    "Number of in-flight HTTP requests",
    labelnames=["method", "endpoint"],
)

errors_total = Counter(
    "pagemeter_errors_total",
    "Total errors by type",
    labelnames=["error_type", "endpoint"],
)

# ============================================================================
# WEBHOOK METRICS
# ============================================================================

# outcome: applied, duplicate, ignored, rejected_<reason>
webhook_events_total = Counter(
    "pagemeter_webhook_events_total",
    "Stripe webhook deliveries by event type and outcome",
    labelnames=["event_type", "outcome"],
)

# Stripe times out deliveries after a few seconds
webhook_processing_seconds = Histogram(
    "pagemeter_webhook_processing_seconds",
    "Webhook verification and reconciliation latency in seconds",
    labelnames=["event_type"],
    buckets=(0.005, 0.010, 0.025, 0.050, 0.100, 0.250, 0.500, 1.000, 2.500, 5.000),
)

subscription_transitions_total = Counter(
    "pagemeter_subscription_transitions_total",
    "Subscription state machine transitions by result",
    labelnames=["transition", "result"],
)

# ============================================================================
# QUOTA METRICS
# ============================================================================

quota_decisions_total = Counter(
    "pagemeter_quota_decisions_total",
    "Quota checks by effective plan and decision",
    labelnames=["plan_id", "decision"],
)

pages_recorded_total = Counter(
    "pagemeter_pages_recorded_total",
    "Billable pages appended to the ledger",
    labelnames=["plan_id"],
)

usage_appends_total = Counter(
    "pagemeter_usage_appends_total",
    "Ledger append attempts by result",
    labelnames=["result"],
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def track_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """
    Track HTTP request metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        endpoint: Normalized API endpoint path
        status_code: HTTP status code
        duration_seconds: Request duration in seconds
    """
    http_request_duration_seconds.labels(
        method=method,
        endpoint=endpoint,
        status_code=status_code,
    ).observe(duration_seconds)

    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status_code=status_code,
    ).inc()


def track_error(error_type: str, endpoint: str) -> None:
    """
    Track error occurrence.

    Args:
        error_type: Error type (validation, storage, stripe, etc.)
        endpoint: API endpoint where error occurred
    """
    errors_total.labels(
        error_type=error_type,
        endpoint=endpoint,
    ).inc()


def track_webhook_event(event_type: str, outcome: str, duration_seconds: float) -> None:
    """
    Track one webhook delivery.

    Args:
        event_type: Stripe event type, or "unparsed" when rejected before parsing
        outcome: applied, duplicate, ignored or rejected_<reason>
        duration_seconds: Time spent verifying and reconciling
    """
    webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()
    webhook_processing_seconds.labels(event_type=event_type).observe(duration_seconds)


def track_subscription_transition(transition: str, result: str) -> None:
    """
    Track a state machine transition.

    Args:
        transition: Transition name (checkout_completed, subscription_updated, ...)
        result: applied, or the no-op reason (missing_row, stale_event, ...)
    """
    subscription_transitions_total.labels(transition=transition, result=result).inc()


def track_quota_decision(plan_id: str, allowed: bool) -> None:
    quota_decisions_total.labels(
        plan_id=plan_id,
        decision="allowed" if allowed else "denied",
    ).inc()


def track_usage_append(plan_id: str, pages: int, result: str) -> None:
    """
    Track a ledger append.

    Args:
        plan_id: Effective plan at append time
        pages: Pages in the append request
        result: recorded, duplicate or over_limit
    """
    usage_appends_total.labels(result=result).inc()
    if result == "recorded":
        pages_recorded_total.labels(plan_id=plan_id).inc(pages)


# ============================================================================
# METRICS ENDPOINT
# ============================================================================


def generate_metrics() -> tuple[bytes, str]:
    """
    Generate Prometheus metrics in exposition format (bytes).

    Returns:
        tuple: (metrics_bytes, content_type)
    """
    metrics_data = generate_latest(REGISTRY)
    return metrics_data, CONTENT_TYPE_LATEST
