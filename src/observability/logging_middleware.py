"""
FastAPI middleware for structured logging with request context.

Automatically:
- Generates request_id for each request (or reuses X-Request-ID)
- Extracts trace_id from X-Trace-ID header (distributed tracing)
- Binds account_id from the gateway's X-Account-ID header
- Logs one completion line per request, levelled by status code

Probe and scrape paths are not logged; they would drown out billing traffic.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from src.observability.logging import RequestContext, get_logger

logger = get_logger(__name__)

QUIET_PATHS = frozenset({"/metrics", "/health/liveness", "/health/readiness"})


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    Request logging bound to request_id, trace_id and account_id.

    Headers:
    - X-Request-ID / X-Trace-ID: reused when present, generated otherwise
    - X-Account-ID: account forwarded by the identity gateway
    - Returns X-Request-ID and X-Trace-ID on every response
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or f"req_{uuid.uuid4().hex[:16]}"
        trace_id = request.headers.get("x-trace-id") or f"trace_{uuid.uuid4().hex[:16]}"
        quiet = request.url.path in QUIET_PATHS

        with RequestContext(
            request_id=request_id,
            trace_id=trace_id,
            account_id=request.headers.get("x-account-id"),
        ):
            start_time = time.perf_counter()

            try:
                response = await call_next(request)
            except Exception as exc:
                logger.error(
                    "HTTP request failed",
                    method=request.method,
                    path=request.url.path,
                    latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
                    exception_type=type(exc).__name__,
                    exc_info=True,
                )
                raise

            if not quiet or response.status_code >= 500:
                self._log_completion(request, response, start_time)

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Trace-ID"] = trace_id
            return response

    @staticmethod
    def _log_completion(request: Request, response: Response, start_time: float) -> None:
        fields = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "latency_ms": round((time.perf_counter() - start_time) * 1000, 2),
            "client_host": request.client.host if request.client else None,
        }
        # Stripe retries anything that is not 2xx
        if request.url.path.endswith("/billing/webhook"):
            fields["stripe_delivery"] = True

        if response.status_code >= 500:
            logger.error("HTTP request completed", **fields)
        elif response.status_code >= 400:
            logger.warning("HTTP request completed", **fields)
        else:
            logger.info("HTTP request completed", **fields)
