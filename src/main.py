"""
FastAPI application for the PageMeter billing service.

Provides REST API for:
- Stripe webhook reconciliation
- Checkout and billing portal initiation
- Quota checks and usage recording for the document pipeline
- Health monitoring and metrics
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.config import Settings, get_settings
from src.observability.health import (
    LivenessResponse,
    ReadinessResponse,
    get_health_checker,
)
from src.observability.logging import configure_logging, get_logger
from src.observability.logging_middleware import StructuredLoggingMiddleware
from src.observability.metrics import generate_metrics
from src.observability.middleware import PrometheusMiddleware
from src.rate_limits import limiter
from src.routers import accounts_router, billing_router, quota_router
from src.storage.database import BillingDatabase, StorageUnavailableError, get_billing_db

settings = get_settings()
configure_logging(
    log_level=settings.logging.level,
    json_output=settings.logging.json_output,
    colorized=settings.logging.colorized,
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup initializes the billing database schema; shutdown closes it.
    """
    logger.info("=== PageMeter Billing Service Starting ===")
    billing_db: BillingDatabase | None = None

    try:
        billing_db = await get_billing_db()
        logger.info("✓ Billing database ready", path=str(billing_db.db_path))

        logger.info(
            "Billing configuration",
            checkout_enabled=settings.stripe.is_configured,
            webhooks_enabled=settings.stripe.webhooks_enabled,
            strict_quota=settings.billing.strict_quota,
        )
        logger.info("=== Service Ready ===")

        yield  # Application runs here

    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        raise

    finally:
        logger.info("=== Shutting down ===")
        if billing_db is not None:
            billing_db.close()
        logger.info("=== Shutdown complete ===")


app = FastAPI(
    title="PageMeter Billing API",
    description="Subscription reconciliation and page quota metering",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Rate limiter state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware (configured via environment variables)
# Production: Set CORS_ALLOWED_ORIGINS="https://app.example.com"
cors_origins = settings.cors.origins_list

if "*" in cors_origins:
    logger.warning(
        "⚠️  CORS allows ALL origins (*) - configure CORS_ALLOWED_ORIGINS for production!"
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=settings.cors.methods_list,
    allow_headers=settings.cors.headers_list,
    max_age=settings.cors.max_age,
)

# Processed in reverse order of registration:
# PrometheusMiddleware (inner) then StructuredLoggingMiddleware (outermost)
app.add_middleware(PrometheusMiddleware)
app.add_middleware(StructuredLoggingMiddleware)

app.include_router(billing_router)
app.include_router(quota_router)
app.include_router(accounts_router)


@app.exception_handler(StorageUnavailableError)
async def storage_error_handler(request: Request, exc: StorageUnavailableError):
    """Storage failures are retryable."""
    logger.error(
        "Billing storage unavailable",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Billing storage temporarily unavailable"},
    )


@app.exception_handler(ValueError)
async def validation_error_handler(request: Request, exc: ValueError):
    """Handle validation errors."""
    logger.warning(f"Validation error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation failed", "error": str(exc)},
    )


@app.get("/health/liveness", response_model=LivenessResponse, tags=["Health"])
async def liveness_probe():
    """Liveness probe. Performs no I/O."""
    return await get_health_checker().check_liveness()


@app.get(
    "/health/readiness",
    response_model=ReadinessResponse,
    tags=["Health"],
    responses={
        200: {"description": "Service is ready"},
        503: {"description": "Service is not ready"},
    },
)
async def readiness_probe(
    response: Response,
    billing_db: BillingDatabase = Depends(get_billing_db),
    current_settings: Settings = Depends(get_settings),
):
    """
    Readiness probe.

    Returns:
        HTTP 200: Database responsive (Stripe configuration may be degraded)
        HTTP 503: Database unavailable
    """
    readiness = await get_health_checker().check_readiness(
        billing_db=billing_db,
        stripe_config=current_settings.stripe,
    )

    if not readiness.ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return readiness


@app.get("/metrics", tags=["System"])
async def metrics():
    """
    Prometheus metrics endpoint.

    Metrics include:
    - HTTP request latency and count
    - Webhook deliveries by type and outcome
    - Subscription transitions
    - Quota decisions and recorded pages by plan
    """
    metrics_data, content_type = generate_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.get("/", tags=["System"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "PageMeter Billing API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health/readiness",
        "metrics": "/metrics",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.service.host,
        port=settings.service.port,
        reload=settings.service.reload,
        workers=settings.service.workers,
        log_level="info",
    )
