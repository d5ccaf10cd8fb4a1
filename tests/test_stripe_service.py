"""
Tests for checkout and billing portal session creation.

Stripe API calls are mocked; no network access.
"""

from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from src.billing.stripe_service import (
    BillingNotConfiguredError,
    CheckoutError,
    PortalError,
    StripeService,
)
from src.config import StripeConfig
from src.models.account import Account
from src.models.subscription import SubscriptionStatus
from src.storage.database import BillingDatabase
from tests.stripe_payloads import PRO_PRICE


@pytest.fixture
def stripe_service(test_settings, billing_db, catalog, state_machine) -> StripeService:
    return StripeService(test_settings.stripe, billing_db, catalog, state_machine)


@pytest.fixture
def mock_stripe():
    with (
        patch.object(stripe.Customer, "create") as customer_create,
        patch.object(stripe.checkout.Session, "create") as session_create,
        patch.object(stripe.billing_portal.Session, "create") as portal_create,
    ):
        customer_create.return_value = SimpleNamespace(id="cus_new")
        session_create.return_value = SimpleNamespace(
            id="cs_test_1", url="https://checkout.stripe.com/c/pay/cs_test_1"
        )
        portal_create.return_value = SimpleNamespace(
            url="https://billing.stripe.com/p/session/test_1"
        )
        yield SimpleNamespace(
            customer_create=customer_create,
            session_create=session_create,
            portal_create=portal_create,
        )


@pytest.mark.asyncio
async def test_checkout_creates_customer_and_session(
    stripe_service: StripeService, billing_db: BillingDatabase, account: Account, mock_stripe
):
    session = await stripe_service.create_checkout_session(account, "pro")

    assert session.session_id == "cs_test_1"
    mock_stripe.customer_create.assert_called_once()
    assert mock_stripe.customer_create.call_args.kwargs["metadata"]["account_id"] == "acme"

    kwargs = mock_stripe.session_create.call_args.kwargs
    assert kwargs["mode"] == "subscription"
    assert kwargs["customer"] == "cus_new"
    assert kwargs["line_items"] == [{"price": PRO_PRICE, "quantity": 1}]
    assert kwargs["metadata"] == {"account_id": "acme", "plan_id": "pro"}
    assert kwargs["client_reference_id"] == "acme"

    stored = await billing_db.get_subscription("acme")
    assert stored.status == SubscriptionStatus.INCOMPLETE
    assert stored.external_customer_id == "cus_new"


@pytest.mark.asyncio
async def test_checkout_reuses_existing_customer(
    stripe_service: StripeService, state_machine, account: Account, mock_stripe
):
    await state_machine.on_checkout_started("acme", "cus_existing", "starter")

    await stripe_service.create_checkout_session(account, "pro")

    mock_stripe.customer_create.assert_not_called()
    assert mock_stripe.session_create.call_args.kwargs["customer"] == "cus_existing"


@pytest.mark.asyncio
async def test_checkout_rejects_unknown_plan(
    stripe_service: StripeService, account: Account, mock_stripe
):
    with pytest.raises(CheckoutError, match="Plan not found"):
        await stripe_service.create_checkout_session(account, "enterprise")
    mock_stripe.session_create.assert_not_called()


@pytest.mark.asyncio
async def test_checkout_rejects_free_plan(
    stripe_service: StripeService, account: Account, mock_stripe
):
    with pytest.raises(CheckoutError):
        await stripe_service.create_checkout_session(account, "free")


@pytest.mark.asyncio
async def test_checkout_wraps_stripe_errors(
    stripe_service: StripeService, billing_db: BillingDatabase, account: Account, mock_stripe
):
    mock_stripe.session_create.side_effect = stripe.InvalidRequestError("No such price", "price")

    with pytest.raises(CheckoutError):
        await stripe_service.create_checkout_session(account, "pro")

    # Failed checkout writes no optimistic row
    assert (await billing_db.get_subscription("acme")).kind == "none"


@pytest.mark.asyncio
async def test_checkout_requires_api_key(billing_db, catalog, account: Account):
    service = StripeService(StripeConfig(api_key=""), billing_db, catalog)

    with pytest.raises(BillingNotConfiguredError):
        await service.create_checkout_session(account, "pro")


@pytest.mark.asyncio
async def test_portal_requires_customer(
    stripe_service: StripeService, account: Account, mock_stripe
):
    with pytest.raises(PortalError, match="No billing account"):
        await stripe_service.create_portal_session(account)


@pytest.mark.asyncio
async def test_portal_session_for_linked_customer(
    stripe_service: StripeService, state_machine, account: Account, mock_stripe
):
    await state_machine.on_checkout_started("acme", "cus_123", "starter")

    url = await stripe_service.create_portal_session(account)

    assert url.startswith("https://billing.stripe.com/")
    assert mock_stripe.portal_create.call_args.kwargs["customer"] == "cus_123"
