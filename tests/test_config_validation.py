"""
Unit tests for config validation functionality.

Tests the validate_configuration method and field validators to ensure
misconfiguration is reported at startup instead of failing on first use.
"""

import logging

import pytest
from pydantic import ValidationError

from src.config import BillingConfig, CORSConfig, Settings, StripeConfig


@pytest.fixture
def configured_settings() -> Settings:
    """Create settings with Stripe and the service key configured."""
    return Settings(
        stripe=StripeConfig(
            api_key="sk_test_51Hx0000000000000000",
            webhook_secret="whsec_test_secret",
            price_id_starter="price_starter",
            price_id_pro="price_pro",
        ),
        billing=BillingConfig(service_api_key="s" * 40),
    )


@pytest.fixture
def unconfigured_settings() -> Settings:
    """Create settings with nothing configured."""
    return Settings(
        stripe=StripeConfig(api_key="", webhook_secret=""),
        billing=BillingConfig(service_api_key=None),
    )


def test_validate_configuration_no_warnings(configured_settings, caplog):
    with caplog.at_level(logging.WARNING):
        configured_settings.validate_configuration()

    assert caplog.records == []


def test_validate_configuration_all_warnings(unconfigured_settings, caplog):
    """
    Every missing piece is reported.

    Checkout, webhooks and service endpoints each get their own warning.
    """
    with caplog.at_level(logging.WARNING):
        unconfigured_settings.validate_configuration()

    messages = [record.message for record in caplog.records]
    assert any("checkout and portal disabled" in m for m in messages)
    assert any("webhook deliveries will be rejected" in m for m in messages)
    assert any("BILLING_SERVICE_API_KEY not configured" in m for m in messages)


def test_validate_configuration_missing_price(caplog):
    settings = Settings(
        stripe=StripeConfig(
            api_key="sk_test_51Hx0000000000000000",
            webhook_secret="whsec_test_secret",
            price_id_starter="price_starter",
            price_id_pro="",
        ),
        billing=BillingConfig(service_api_key="s" * 40),
    )

    with caplog.at_level(logging.WARNING):
        settings.validate_configuration()

    assert any("No Stripe price configured for plan 'pro'" in r.message for r in caplog.records)


def test_placeholder_api_key_disables_checkout():
    config = StripeConfig(api_key="sk_test_changeme")
    assert config.api_key == ""
    assert config.is_configured is False


def test_redirect_urls_join_site_url():
    config = StripeConfig(site_url="https://app.example.com/")
    assert config.success_url == "https://app.example.com/dashboard/subscription?success=true"
    assert config.portal_return_url == "https://app.example.com/dashboard/subscription"


def test_pro_limit_must_not_be_below_starter():
    with pytest.raises(ValidationError, match="pro_page_limit"):
        BillingConfig(starter_page_limit=100, pro_page_limit=50)


def test_short_service_key_warns(caplog):
    with caplog.at_level(logging.WARNING):
        BillingConfig(service_api_key="short")

    assert any("too short" in record.message for record in caplog.records)


def test_cors_origins_list():
    cors = CORSConfig(allowed_origins="https://a.example.com, https://b.example.com")
    assert cors.origins_list == ["https://a.example.com", "https://b.example.com"]
    assert CORSConfig(allowed_origins="*").origins_list == ["*"]
