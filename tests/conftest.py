"""
Pytest configuration and fixtures.

Provides shared fixtures for:
- Test settings (Stripe test keys, service key, temp database path)
- Billing database on a temporary SQLite file
- Plan catalog and billing components
- Signed Stripe webhook deliveries
- FastAPI test client with dependency overrides
"""

import asyncio
from collections.abc import Callable

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from src.billing.credit_ledger import CreditLedger
from src.billing.dependencies import get_plan_catalog
from src.billing.plan_catalog import PlanCatalog
from src.billing.quota import QuotaEnforcer
from src.billing.subscription_state import SubscriptionStateMachine
from src.billing.webhooks import WebhookReconciler
from src.config import BillingConfig, LoggingConfig, Settings, StripeConfig, get_settings
from src.models.account import Account
from src.storage.database import BillingDatabase, get_billing_db
from src.webhooks.signing import StripeWebhookSigner, build_event
from tests.stripe_payloads import PRO_PRICE, STARTER_PRICE, T0

SERVICE_KEY = "svc_test_0123456789abcdef0123456789abcdef"
WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Create test settings with Stripe test configuration."""
    return Settings(
        stripe=StripeConfig(
            api_key="sk_test_51Hx0000000000000000",
            webhook_secret=WEBHOOK_SECRET,
            price_id_starter=STARTER_PRICE,
            price_id_pro=PRO_PRICE,
        ),
        billing=BillingConfig(
            free_page_limit=10,
            starter_page_limit=75,
            pro_page_limit=250,
            database_path=str(tmp_path / "billing.db"),
            service_api_key=SERVICE_KEY,
        ),
        logging=LoggingConfig(json_output=False),
    )


@pytest.fixture
def catalog(test_settings: Settings) -> PlanCatalog:
    return PlanCatalog.from_settings(test_settings)


@pytest.fixture
def billing_db(test_settings: Settings):
    """Initialized billing database on a temporary file."""
    db = BillingDatabase(db_path=test_settings.billing.database_path)
    asyncio.run(db.initialize())
    yield db
    db.close()


@pytest.fixture
def state_machine(billing_db: BillingDatabase, catalog: PlanCatalog) -> SubscriptionStateMachine:
    return SubscriptionStateMachine(billing_db, catalog)


@pytest.fixture
def ledger(billing_db: BillingDatabase, catalog: PlanCatalog) -> CreditLedger:
    return CreditLedger(billing_db, catalog)


@pytest.fixture
def enforcer(billing_db: BillingDatabase, catalog: PlanCatalog) -> QuotaEnforcer:
    return QuotaEnforcer(billing_db, catalog)


@pytest.fixture
def reconciler(
    test_settings: Settings,
    billing_db: BillingDatabase,
    state_machine: SubscriptionStateMachine,
    catalog: PlanCatalog,
) -> WebhookReconciler:
    return WebhookReconciler(test_settings.stripe, billing_db, state_machine, catalog)


@pytest_asyncio.fixture
async def account(billing_db: BillingDatabase) -> Account:
    """Free account created at T0."""
    return await billing_db.upsert_account(
        Account(
            account_id="acme",
            external_id="user_2abc",
            email="owner@acme.test",
            created_at=T0,
        )
    )


@pytest.fixture
def signer() -> StripeWebhookSigner:
    return StripeWebhookSigner(WEBHOOK_SECRET)


@pytest.fixture
def signed_event(signer: StripeWebhookSigner) -> Callable[..., tuple[bytes, str]]:
    """
    Build and sign a Stripe event.

    Returns a callable: (event_type, data_object, **envelope) -> (body, header)
    """

    def _signed(event_type: str, data_object: dict, **envelope) -> tuple[bytes, str]:
        body = signer.encode(build_event(event_type, data_object, **envelope))
        return body.encode("utf-8"), signer.sign_payload(body)

    return _signed


@pytest.fixture
def app_client(
    test_settings: Settings, billing_db: BillingDatabase, catalog: PlanCatalog
) -> TestClient:
    """
    FastAPI test client wired to the temporary database.

    The lifespan is not entered, so the global database is never opened.
    """
    from src.main import app
    from src.rate_limits import limiter

    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_billing_db] = lambda: billing_db
    app.dependency_overrides[get_plan_catalog] = lambda: catalog
    limiter.reset()

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def service_headers() -> dict[str, str]:
    return {"X-Service-Key": SERVICE_KEY}
