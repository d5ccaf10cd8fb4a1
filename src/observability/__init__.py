"""
Observability infrastructure for production monitoring.

Components:
- metrics.py: Prometheus metrics (counters, histograms, gauges)
- logging.py: Structured JSON logging with request context
- middleware.py / logging_middleware.py: request metrics and request logs
"""

from src.observability.metrics import (
    generate_metrics,
    track_quota_decision,
    track_request,
    track_subscription_transition,
    track_usage_append,
    track_webhook_event,
)

__all__ = [
    "generate_metrics",
    "track_request",
    "track_webhook_event",
    "track_subscription_transition",
    "track_quota_decision",
    "track_usage_append",
]
