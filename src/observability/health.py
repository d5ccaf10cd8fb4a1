"""
Health check system for Kubernetes readiness and liveness probes.

Provides:
- Liveness probe: Is the service alive? (no I/O)
- Readiness probe: Can the billing database be queried?
- Stripe configuration reported as a non-critical component

Kubernetes Integration:
```yaml
livenessProbe:
  httpGet:
    path: /health/liveness
    port: 8000
readinessProbe:
  httpGet:
    path: /health/readiness
    port: 8000
```
"""

import time
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from src.config import StripeConfig
from src.observability.logging import get_logger
from src.storage.database import BillingDatabase, StorageUnavailableError

logger = get_logger(__name__)


# ============================================================================
# HEALTH STATUS MODELS
# ============================================================================


class HealthStatus(str, Enum):
    """Health status enumeration."""

    HEALTHY = "healthy"  # All checks passed
    DEGRADED = "degraded"  # Some non-critical checks failed
    UNHEALTHY = "unhealthy"  # Critical checks failed


class ComponentHealth(BaseModel):
    """Health status of a single component."""

    name: str = Field(description="Component name")
    status: HealthStatus = Field(description="Component health status")
    message: str | None = Field(default=None, description="Status message")
    latency_ms: float | None = Field(
        default=None, description="Health check latency in milliseconds"
    )
    last_check: datetime = Field(description="Last health check timestamp")
    metadata: dict[str, Any] | None = Field(
        default=None, description="Additional component metadata"
    )


class LivenessResponse(BaseModel):
    """Minimal liveness probe response."""

    status: str = Field(default="alive", description="Liveness status")
    timestamp: datetime = Field(description="Check timestamp")
    uptime_seconds: float = Field(description="Service uptime in seconds")


class ReadinessResponse(BaseModel):
    """Readiness probe response with dependency checks."""

    status: HealthStatus = Field(description="Readiness status")
    timestamp: datetime = Field(description="Check timestamp")
    ready: bool = Field(description="Whether service is ready to accept traffic")
    components: list[ComponentHealth] = Field(description="Component health statuses")


# ============================================================================
# HEALTH CHECKER
# ============================================================================


class HealthChecker:
    """
    Health check coordinator.

    The billing database is critical; missing Stripe configuration only
    degrades the service (quota checks keep working).
    """

    def __init__(self):
        self.start_time = time.time()

    def get_uptime_seconds(self) -> float:
        return time.time() - self.start_time

    async def check_liveness(self) -> LivenessResponse:
        """
        Liveness probe: Is the service alive?

        Performs no I/O.
        """
        return LivenessResponse(
            status="alive",
            timestamp=datetime.now(UTC),
            uptime_seconds=round(self.get_uptime_seconds(), 2),
        )

    async def check_readiness(
        self,
        billing_db: BillingDatabase | None = None,
        stripe_config: StripeConfig | None = None,
    ) -> ReadinessResponse:
        """
        Readiness probe: Is the service ready to accept traffic?

        Returns:
            ReadinessResponse: ready is False only if a critical check failed
        """
        components: list[ComponentHealth] = []
        overall_status = HealthStatus.HEALTHY

        if billing_db is not None:
            db_health = await self._check_database_health(billing_db)
            components.append(db_health)
            if db_health.status == HealthStatus.UNHEALTHY:
                overall_status = HealthStatus.UNHEALTHY

        if stripe_config is not None:
            stripe_health = self._check_stripe_config(stripe_config)
            components.append(stripe_health)
            if (
                stripe_health.status == HealthStatus.DEGRADED
                and overall_status == HealthStatus.HEALTHY
            ):
                overall_status = HealthStatus.DEGRADED

        return ReadinessResponse(
            status=overall_status,
            timestamp=datetime.now(UTC),
            ready=overall_status != HealthStatus.UNHEALTHY,
            components=components,
        )

    async def _check_database_health(self, billing_db: BillingDatabase) -> ComponentHealth:
        """Run SELECT 1 against the billing database."""
        start_time = time.perf_counter()

        try:
            await billing_db.ping()
        except StorageUnavailableError as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.error("Database health check failed", error=str(e))
            return ComponentHealth(
                name="billing_database",
                status=HealthStatus.UNHEALTHY,
                message=f"Database check failed: {e}",
                latency_ms=round(latency_ms, 2),
                last_check=datetime.now(UTC),
            )

        latency_ms = (time.perf_counter() - start_time) * 1000
        return ComponentHealth(
            name="billing_database",
            status=HealthStatus.HEALTHY,
            message="Database responsive",
            latency_ms=round(latency_ms, 2),
            last_check=datetime.now(UTC),
        )

    def _check_stripe_config(self, stripe_config: StripeConfig) -> ComponentHealth:
        missing = []
        if not stripe_config.is_configured:
            missing.append("api_key")
        if not stripe_config.webhooks_enabled:
            missing.append("webhook_secret")

        return ComponentHealth(
            name="stripe",
            status=HealthStatus.DEGRADED if missing else HealthStatus.HEALTHY,
            message=f"Missing configuration: {', '.join(missing)}" if missing else "Configured",
            last_check=datetime.now(UTC),
            metadata={
                "checkout_enabled": stripe_config.is_configured,
                "webhooks_enabled": stripe_config.webhooks_enabled,
            },
        )


# Global health checker instance
_health_checker: HealthChecker | None = None


def get_health_checker() -> HealthChecker:
    global _health_checker
    if _health_checker is None:
        _health_checker = HealthChecker()
    return _health_checker
