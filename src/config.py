"""
Configuration management for the PageMeter billing service.

Uses Pydantic Settings for type-safe configuration with multiple sources:
- Environment variables (highest priority)
- .env file
- Defaults (lowest priority)
"""

import logging
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StripeConfig(BaseSettings):
    """
    Stripe configuration for checkout, portal and webhook verification.

    Security: API keys and webhook secrets are never logged or exposed in errors.
    """

    model_config = SettingsConfigDict(
        env_prefix="STRIPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_key: str = Field(default="", description="Stripe secret key (sk_live_/sk_test_)")
    webhook_secret: str = Field(default="", description="Webhook endpoint signing secret (whsec_)")

    # Price IDs that map Stripe line items back to plan ids
    price_id_starter: str = Field(default="", description="Stripe price for the starter plan")
    price_id_pro: str = Field(default="", description="Stripe price for the pro plan")

    # Redirect URLs for hosted Checkout and the billing portal
    site_url: str = Field(default="http://localhost:5173")
    checkout_success_path: str = Field(default="/dashboard/subscription?success=true")
    checkout_cancel_path: str = Field(default="/dashboard/upgrade?canceled=true")
    portal_return_path: str = Field(default="/dashboard/subscription")

    webhook_tolerance_seconds: int = Field(
        default=300,
        ge=1,
        le=3600,
        description="Maximum age of a webhook signature timestamp",
    )

    @field_validator("api_key")
    @classmethod
    def validate_api_key_security(cls, v: str) -> str:
        """Drop obvious placeholders so billing reports itself as disabled."""
        if not v:
            return ""

        placeholder_patterns = ["your-api-key-here", "example", "dummy", "changeme"]
        if any(pattern in v.lower() for pattern in placeholder_patterns):
            logging.warning("STRIPE_API_KEY appears to be a placeholder - checkout disabled")
            return ""

        if not v.startswith(("sk_", "rk_")):
            logging.warning("STRIPE_API_KEY does not look like a Stripe secret key")

        return v

    @property
    def is_configured(self) -> bool:
        """Checkout and portal need a secret key."""
        return bool(self.api_key)

    @property
    def webhooks_enabled(self) -> bool:
        return bool(self.webhook_secret)

    @property
    def success_url(self) -> str:
        return f"{self.site_url.rstrip('/')}{self.checkout_success_path}"

    @property
    def cancel_url(self) -> str:
        return f"{self.site_url.rstrip('/')}{self.checkout_cancel_path}"

    @property
    def portal_return_url(self) -> str:
        return f"{self.site_url.rstrip('/')}{self.portal_return_path}"


class BillingConfig(BaseSettings):
    """Plan limits, billing cycle and quota enforcement settings."""

    model_config = SettingsConfigDict(
        env_prefix="BILLING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Monthly page limits per plan
    free_page_limit: int = Field(default=10, ge=0)
    starter_page_limit: int = Field(default=75, ge=0)
    pro_page_limit: int = Field(default=250, ge=0)

    # Display prices in cents (informational, Stripe is authoritative)
    starter_price_cents: int = Field(default=999, ge=0)
    pro_price_cents: int = Field(default=2499, ge=0)

    # Rolling cycle for accounts without a processor-reported period
    cycle_length_days: int = Field(default=30, ge=1, le=366)

    strict_quota: bool = Field(
        default=False,
        description="Check and append usage inside one transaction (no concurrent overdraft)",
    )

    database_path: str = Field(default="./data/billing.db")

    # Shared key for service-to-service calls (document pipeline, identity sync)
    service_api_key: str | None = Field(default=None)

    @field_validator("service_api_key")
    @classmethod
    def validate_service_api_key(cls, v: str | None) -> str | None:
        if not v:
            return None

        if len(v) < 32:
            logging.warning(
                "BILLING_SERVICE_API_KEY seems too short to be secure - use at least 32 characters"
            )
        return v

    @field_validator("pro_page_limit")
    @classmethod
    def validate_tier_ordering(cls, v: int, info) -> int:
        starter = info.data.get("starter_page_limit")
        if starter is not None and v < starter:
            raise ValueError(f"pro_page_limit ({v}) must be >= starter_page_limit ({starter})")
        return v


class ServiceConfig(BaseSettings):
    """FastAPI service configuration."""

    model_config = SettingsConfigDict(env_prefix="SERVICE_")

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1, le=65535)
    reload: bool = Field(default=False)
    workers: int = Field(default=1, ge=1)

    checkout_rate_limit: str = Field(
        default="10/minute", description="slowapi limit for checkout and portal endpoints"
    )


class CORSConfig(BaseSettings):
    """CORS configuration for API security."""

    model_config = SettingsConfigDict(env_prefix="CORS_")

    allowed_origins: str = Field(
        default="*", description="Comma-separated list of allowed origins (* for all, ONLY for dev)"
    )
    allow_credentials: bool = Field(default=True)
    allowed_methods: str = Field(default="GET,POST,OPTIONS")
    allowed_headers: str = Field(default="*")
    max_age: int = Field(default=600, ge=0, description="Preflight cache duration in seconds")

    @property
    def origins_list(self) -> list[str]:
        if self.allowed_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def methods_list(self) -> list[str]:
        return [method.strip() for method in self.allowed_methods.split(",") if method.strip()]

    @property
    def headers_list(self) -> list[str]:
        if self.allowed_headers == "*":
            return ["*"]
        return [header.strip() for header in self.allowed_headers.split(",") if header.strip()]


class LoggingConfig(BaseSettings):
    """Structured logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOGGING_")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    json_output: bool = Field(
        default=True, description="Use JSON output (True for production, False for development)"
    )
    colorized: bool = Field(default=False)

    service_name: str = Field(default="pagemeter")
    service_version: str = Field(default="0.1.0")
    environment: Literal["development", "staging", "production"] = Field(default="development")


class Settings(BaseSettings):
    """Root configuration for the PageMeter billing service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    stripe: StripeConfig = Field(default_factory=StripeConfig)
    billing: BillingConfig = Field(default_factory=BillingConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    cors: CORSConfig = Field(default_factory=CORSConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def validate_configuration(self) -> None:
        """
        Validate cross-field constraints and log warnings.
        Called at application startup.
        """
        if not self.stripe.is_configured:
            logging.warning("Stripe API key not configured - checkout and portal disabled")

        if not self.stripe.webhooks_enabled:
            logging.warning(
                "Stripe webhook secret not configured - webhook deliveries will be rejected"
            )

        for plan_id, price_id in (
            ("starter", self.stripe.price_id_starter),
            ("pro", self.stripe.price_id_pro),
        ):
            if self.stripe.is_configured and not price_id:
                logging.warning(f"No Stripe price configured for plan '{plan_id}'")

        if self.billing.service_api_key is None:
            logging.warning(
                "BILLING_SERVICE_API_KEY not configured - quota and account endpoints are BLOCKED"
            )


# Global settings instance (lazy-loaded)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get global settings instance (singleton pattern).

    Returns:
        Settings: Application configuration
    """
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.validate_configuration()
    return _settings
