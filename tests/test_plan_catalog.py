"""
Tests for the plan catalog.
"""

import pytest

from src.billing.plan_catalog import PlanCatalog
from src.config import BillingConfig, Settings, StripeConfig
from src.models.plan import Plan
from tests.stripe_payloads import PRO_PRICE, STARTER_PRICE


def test_default_catalog_limits(catalog: PlanCatalog):
    assert catalog.limit_for("free") == 10
    assert catalog.limit_for("starter") == 75
    assert catalog.limit_for("pro") == 250


def test_plans_sorted_cheapest_first(catalog: PlanCatalog):
    assert [p.plan_id for p in catalog.plans()] == ["free", "starter", "pro"]
    assert catalog.get("pro").popular is True


def test_unknown_plan_falls_back_to_free(catalog: PlanCatalog):
    assert catalog.get("enterprise").plan_id == "free"
    assert catalog.limit_for(None) == 10
    assert catalog.has("enterprise") is False


def test_resolve_plan_id_by_price(catalog: PlanCatalog):
    assert catalog.resolve_plan_id(STARTER_PRICE) == "starter"
    assert catalog.resolve_plan_id(PRO_PRICE) == "pro"


def test_resolve_plan_id_unmapped_price_is_free(catalog: PlanCatalog):
    assert catalog.resolve_plan_id("price_unknown") == "free"
    assert catalog.resolve_plan_id(None) == "free"


def test_resolve_plan_id_by_lookup_key(catalog: PlanCatalog):
    assert catalog.resolve_plan_id("price_unknown", lookup_key="pro") == "pro"
    assert catalog.resolve_plan_id(None, lookup_key="nonexistent") == "free"


def test_resolve_scans_every_plan():
    """A third paid tier resolves without special-casing."""
    catalog = PlanCatalog(
        [
            Plan(plan_id="free", name="Free", monthly_page_limit=10),
            Plan(plan_id="starter", name="Starter", monthly_page_limit=75, price_cents=999),
            Plan(
                plan_id="business",
                name="Business",
                monthly_page_limit=2000,
                price_cents=9900,
                stripe_price_ids=("price_business_v2", "price_business_v1"),
            ),
        ]
    )

    assert catalog.resolve_plan_id("price_business_v1") == "business"
    assert catalog.price_id_for("business") == "price_business_v2"


def test_legacy_price_ids_from_settings():
    settings = Settings(
        stripe=StripeConfig(price_id_starter="price_new, price_old", price_id_pro=""),
        billing=BillingConfig(),
    )
    catalog = PlanCatalog.from_settings(settings)

    assert catalog.resolve_plan_id("price_old") == "starter"
    assert catalog.price_id_for("starter") == "price_new"
    assert catalog.price_id_for("pro") is None


def test_catalog_requires_free_plan():
    with pytest.raises(ValueError, match="free"):
        PlanCatalog([Plan(plan_id="pro", name="Pro", monthly_page_limit=250)])


def test_catalog_rejects_duplicate_ids():
    with pytest.raises(ValueError, match="Duplicate"):
        PlanCatalog(
            [
                Plan(plan_id="free", name="Free", monthly_page_limit=10),
                Plan(plan_id="free", name="Free again", monthly_page_limit=20),
            ]
        )


def test_free_plan_is_not_paid(catalog: PlanCatalog):
    assert catalog.free.is_paid is False
    assert catalog.get("starter").is_paid is True
