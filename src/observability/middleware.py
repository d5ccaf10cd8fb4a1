"""
Observability middleware for automatic metric tracking.

Components:
- PrometheusMiddleware: Tracks all HTTP requests (latency, count, active)
"""

import logging
import re
import time
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from src.observability.metrics import (
    http_requests_active,
    track_error,
    track_request,
)

logger = logging.getLogger(__name__)


def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path for metric cardinality.

    Examples:
        /api/v1/accounts/acme-corp → /api/v1/accounts/{account_id}
        /api/v1/quota/check → /api/v1/quota/check (unchanged)
    """
    return re.sub(r"/accounts/[a-z0-9_-]+", "/accounts/{account_id}", path)


def classify_error(exc: Exception) -> str:
    """Map an exception onto a coarse error category."""
    exc_name = type(exc).__name__

    if "ValidationError" in exc_name or "ValueError" in exc_name:
        return "validation"

    if "StorageUnavailable" in exc_name or "OperationalError" in exc_name:
        return "storage"

    if "Stripe" in exc_name or "Checkout" in exc_name:
        return "stripe"

    if "RateLimitExceeded" in exc_name:
        return "rate_limit"

    return "internal"


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware for automatic Prometheus metric tracking.

    Tracks:
    - Request latency (histogram)
    - Request count (counter)
    - Active requests (gauge)
    - Unhandled errors by category
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        endpoint = normalize_endpoint(request.url.path)
        method = request.method

        http_requests_active.labels(method=method, endpoint=endpoint).inc()
        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code

        except Exception as exc:
            logger.error(f"Request failed: {exc}", exc_info=True)
            track_error(error_type=classify_error(exc), endpoint=endpoint)
            raise

        finally:
            duration_seconds = time.perf_counter() - start_time
            http_requests_active.labels(method=method, endpoint=endpoint).dec()
            track_request(
                method=method,
                endpoint=endpoint,
                status_code=status_code,
                duration_seconds=duration_seconds,
            )

        return response
