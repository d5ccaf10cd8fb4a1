"""
FastAPI dependency providers for billing components.

Components are cheap to build and hold no state of their own, so each
request gets instances wired to the shared database and the catalog built
from the current settings. Tests swap get_billing_db / get_settings /
get_plan_catalog through app.dependency_overrides.
"""

from fastapi import Depends

from src.billing.credit_ledger import CreditLedger
from src.billing.plan_catalog import PlanCatalog
from src.billing.quota import QuotaEnforcer
from src.billing.stripe_service import StripeService
from src.billing.subscription_state import SubscriptionStateMachine
from src.billing.webhooks import WebhookReconciler
from src.config import Settings, get_settings
from src.storage.database import BillingDatabase, get_billing_db

# Catalog cached per Settings instance
_catalog: PlanCatalog | None = None
_catalog_settings: Settings | None = None


def get_plan_catalog(settings: Settings = Depends(get_settings)) -> PlanCatalog:
    global _catalog, _catalog_settings
    if _catalog is None or _catalog_settings is not settings:
        _catalog = PlanCatalog.from_settings(settings)
        _catalog_settings = settings
    return _catalog


def get_state_machine(
    db: BillingDatabase = Depends(get_billing_db),
    catalog: PlanCatalog = Depends(get_plan_catalog),
) -> SubscriptionStateMachine:
    return SubscriptionStateMachine(db, catalog)


def get_credit_ledger(
    db: BillingDatabase = Depends(get_billing_db),
    catalog: PlanCatalog = Depends(get_plan_catalog),
) -> CreditLedger:
    return CreditLedger(db, catalog)


def get_quota_enforcer(
    settings: Settings = Depends(get_settings),
    db: BillingDatabase = Depends(get_billing_db),
    catalog: PlanCatalog = Depends(get_plan_catalog),
    ledger: CreditLedger = Depends(get_credit_ledger),
) -> QuotaEnforcer:
    return QuotaEnforcer(
        db,
        catalog,
        ledger=ledger,
        cycle_days=settings.billing.cycle_length_days,
        strict=settings.billing.strict_quota,
    )


def get_webhook_reconciler(
    settings: Settings = Depends(get_settings),
    db: BillingDatabase = Depends(get_billing_db),
    catalog: PlanCatalog = Depends(get_plan_catalog),
    state_machine: SubscriptionStateMachine = Depends(get_state_machine),
) -> WebhookReconciler:
    return WebhookReconciler(settings.stripe, db, state_machine, catalog)


def get_stripe_service(
    settings: Settings = Depends(get_settings),
    db: BillingDatabase = Depends(get_billing_db),
    catalog: PlanCatalog = Depends(get_plan_catalog),
    state_machine: SubscriptionStateMachine = Depends(get_state_machine),
) -> StripeService:
    return StripeService(settings.stripe, db, catalog, state_machine)
