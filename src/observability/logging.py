"""
Structured logging with JSON output for production observability.

Features:
- JSON output for log aggregation (ELK, Loki, CloudWatch)
- Request context propagation (account_id, request_id, trace_id)
- Redaction of Stripe secrets, signatures and emails
- Standard-library loggers rendered through the same pipeline, including
  fields passed via extra=

Architecture:
- structlog for structured logging
- Context variables for request-scoped data
- structlog ProcessorFormatter on the root handler
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, Processor

# Context variables for request-scoped data
# These propagate across async boundaries automatically
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
account_id_var: ContextVar[str | None] = ContextVar("account_id", default=None)
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)

SENSITIVE_FIELDS = frozenset(
    {
        "api_key",
        "service_key",
        "password",
        "authorization",
        "secret",
        "webhook_secret",
        "signature",
        "stripe_signature",
        "token",
    }
)


# ============================================================================
# CUSTOM PROCESSORS
# ============================================================================


def add_request_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Add request context to log events.

    Injects:
    - request_id: Unique ID for each HTTP request
    - account_id: Account from the identity gateway (if available)
    - trace_id: Distributed tracing ID (for multi-service correlation)
    """
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    account_id = account_id_var.get()
    if account_id and "account_id" not in event_dict:
        event_dict["account_id"] = account_id

    trace_id = trace_id_var.get()
    if trace_id:
        event_dict["trace_id"] = trace_id

    return event_dict


def add_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add ISO 8601 timestamp with microsecond precision.

    Format: 2025-01-15T10:30:45.123456Z
    """
    now = time.time()
    event_dict["timestamp"] = (
        time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(now)) + f".{int((now % 1) * 1000000):06d}Z"
    )
    return event_dict


def add_service_metadata(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Add service metadata for log aggregation.

    Configured via LOGGING_SERVICE_NAME, LOGGING_SERVICE_VERSION and
    LOGGING_ENVIRONMENT.
    """
    # Import here to avoid circular dependency
    from src.config import get_settings

    settings = get_settings()
    event_dict["service"] = settings.logging.service_name
    event_dict["version"] = settings.logging.service_version
    event_dict["environment"] = settings.logging.environment
    return event_dict


def redact_sensitive_fields(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Redact sensitive fields to prevent PII/credential leakage.

    Redacted fields:
    - Keys, secrets and signatures: prefix kept (sk_test_abc... → sk_test_abc***xyz)
    - email: Replaced with domain-only (user@example.com → ***@example.com)
    """
    for key in list(event_dict.keys()):
        value = event_dict[key]
        if not isinstance(value, str):
            continue

        if key.lower() in SENSITIVE_FIELDS:
            if len(value) > 12:
                event_dict[key] = f"{value[:12]}***{value[-3:]}"
            else:
                event_dict[key] = "***REDACTED***"

        elif key.lower() == "email" and "@" in value:
            domain = value.split("@")[1]
            event_dict[key] = f"***@{domain}"

    return event_dict


def add_exception_info(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Add structured exception information.

    Extracts:
    - exception_type: Exception class name
    - exception_message: Exception message
    """
    exc_info = event_dict.get("exc_info")
    if exc_info and isinstance(exc_info, tuple) and len(exc_info) == 3:
        exc_type, exc_value, _ = exc_info
        event_dict["exception_type"] = exc_type.__name__ if exc_type else "Unknown"
        event_dict["exception_message"] = str(exc_value) if exc_value else ""

    return event_dict


# ============================================================================
# LOGGER CONFIGURATION
# ============================================================================


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        add_request_context,
        add_service_metadata,
        redact_sensitive_fields,
        add_timestamp,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        add_exception_info,
    ]


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    colorized: bool = False,
) -> None:
    """
    Configure structured logging for production.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Use JSON output (True for production, False for development)
        colorized: Colorize console output (only for development)

    JSON output:
        {
          "timestamp": "2025-01-15T10:30:45.123456Z",
          "level": "info",
          "event": "Webhook event processed",
          "service": "pagemeter",
          "request_id": "req_abc123",
          "event_type": "invoice.payment_succeeded",
          "event_id": "evt_123"
        }
    """
    if json_output:
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=colorized)

    structlog.configure(
        processors=_shared_processors()
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Standard-library loggers (billing modules) go through the same renderer
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.stdlib.ExtraAdder()] + _shared_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, log_level.upper()))


# ============================================================================
# LOGGER FACTORY
# ============================================================================


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Usage:
        logger = get_logger(__name__)
        logger.info("Checkout started", plan_id="pro")
    """
    return structlog.get_logger(name)


# ============================================================================
# CONTEXT MANAGERS
# ============================================================================


class RequestContext:
    """
    Context manager for request-scoped logging.

    Automatically generates request_id and trace_id and propagates account_id.

    Thread-safe:
        - Uses contextvars for async-safe propagation
        - Each async task has isolated context
    """

    def __init__(
        self,
        account_id: str | None = None,
        trace_id: str | None = None,
        request_id: str | None = None,
    ):
        self.request_id = request_id or f"req_{uuid.uuid4().hex[:16]}"
        self.account_id = account_id
        self.trace_id = trace_id or f"trace_{uuid.uuid4().hex[:16]}"

        # Tokens for context cleanup
        self._request_id_token = None
        self._account_id_token = None
        self._trace_id_token = None

    def __enter__(self):
        self._request_id_token = request_id_var.set(self.request_id)
        # Always set account_id (even if None) so a nested value never leaks out
        self._account_id_token = account_id_var.set(self.account_id)
        self._trace_id_token = trace_id_var.set(self.trace_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._request_id_token is not None:
            request_id_var.reset(self._request_id_token)
        if self._account_id_token is not None:
            account_id_var.reset(self._account_id_token)
        if self._trace_id_token is not None:
            trace_id_var.reset(self._trace_id_token)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def get_request_id() -> str | None:
    return request_id_var.get()


def get_account_id() -> str | None:
    return account_id_var.get()


def get_trace_id() -> str | None:
    return trace_id_var.get()
