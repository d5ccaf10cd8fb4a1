"""
Stripe integration service for checkout and the customer billing portal.

Features:
- Reuse or create the Stripe customer for an account
- Hosted Checkout sessions for paid plans (subscription mode)
- Billing portal sessions for plan changes and cancellation

Subscription state itself is only changed by webhooks, except for the
optimistic INCOMPLETE row written when checkout starts.
"""

import logging

import stripe
from pydantic import BaseModel

from src.billing.plan_catalog import PlanCatalog
from src.billing.subscription_state import SubscriptionStateMachine
from src.config import StripeConfig
from src.models.account import Account
from src.models.subscription import SubscriptionRecord
from src.storage.database import BillingDatabase

logger = logging.getLogger(__name__)


class StripeError(Exception):
    """Base exception for Stripe-related errors."""

    pass


class BillingNotConfiguredError(StripeError):
    """Stripe API key is not configured."""

    pass


class CheckoutError(StripeError):
    """Checkout session could not be created."""

    pass


class PortalError(StripeError):
    """Billing portal session could not be created."""

    pass


class CheckoutSession(BaseModel):
    url: str
    session_id: str


class StripeService:
    """
    Stripe integration service.

    Handles:
    - Customer creation / reuse
    - Checkout session creation (producer of the INCOMPLETE row)
    - Billing portal sessions
    """

    def __init__(
        self,
        config: StripeConfig,
        db: BillingDatabase,
        catalog: PlanCatalog,
        state_machine: SubscriptionStateMachine | None = None,
    ):
        """
        Initialize Stripe service.

        Args:
            config: Stripe configuration
            db: Billing database
            catalog: Plan catalog (price ids for checkout)
            state_machine: State machine used to write the optimistic row
        """
        self.config = config
        self.db = db
        self.catalog = catalog
        self.state_machine = state_machine or SubscriptionStateMachine(db, catalog)

        if config.api_key:
            stripe.api_key = config.api_key
            logger.info("Stripe service initialized")
        else:
            logger.warning("Stripe API key not configured - billing disabled")

    @property
    def is_enabled(self) -> bool:
        """Check if Stripe is properly configured."""
        return self.config.is_configured

    async def get_or_create_customer(self, account: Account) -> str:
        """
        Stripe customer id for an account, creating the customer if needed.

        Args:
            account: Account to look up or create in Stripe

        Returns:
            Stripe customer ID (cus_xxx)

        Raises:
            CheckoutError: If creation fails
        """
        subscription = await self.db.get_subscription(account.account_id)
        if isinstance(subscription, SubscriptionRecord) and subscription.external_customer_id:
            return subscription.external_customer_id

        try:
            stripe_customer = stripe.Customer.create(
                email=account.email,
                metadata={
                    "account_id": account.account_id,
                    "external_id": account.external_id,
                },
            )
        except stripe.StripeError as e:
            logger.error(
                "Failed to create Stripe customer",
                extra={"account_id": account.account_id, "error": str(e)},
            )
            raise CheckoutError(f"Failed to create checkout session: {e}") from e

        logger.info(
            "Created Stripe customer",
            extra={"account_id": account.account_id, "stripe_customer_id": stripe_customer.id},
        )
        return stripe_customer.id

    async def create_checkout_session(self, account: Account, plan_id: str) -> CheckoutSession:
        """
        Start hosted Checkout for a paid plan.

        Args:
            account: Authenticated account
            plan_id: Paid plan to subscribe to

        Returns:
            CheckoutSession: Redirect URL and session id

        Raises:
            BillingNotConfiguredError: If Stripe is not configured
            CheckoutError: If the plan is not purchasable or Stripe fails
        """
        if not self.is_enabled:
            raise BillingNotConfiguredError("Stripe not configured")

        if not self.catalog.has(plan_id):
            raise CheckoutError(f"Plan not found: {plan_id}")

        plan = self.catalog.get(plan_id)
        if not plan.is_paid:
            raise CheckoutError(f"Plan '{plan_id}' does not require checkout")

        price_id = self.catalog.price_id_for(plan_id)
        if not price_id:
            raise CheckoutError(f"Price ID not configured for plan: {plan_id}")

        customer_id = await self.get_or_create_customer(account)
        metadata = {"account_id": account.account_id, "plan_id": plan_id}

        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=self.config.success_url,
                cancel_url=self.config.cancel_url,
                client_reference_id=account.account_id,
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )
        except stripe.StripeError as e:
            logger.error(
                "Failed to create checkout session",
                extra={"account_id": account.account_id, "plan_id": plan_id, "error": str(e)},
            )
            raise CheckoutError(f"Failed to create checkout session: {e}") from e

        await self.state_machine.on_checkout_started(account.account_id, customer_id, plan_id)

        logger.info(
            "Created checkout session",
            extra={
                "account_id": account.account_id,
                "plan_id": plan_id,
                "session_id": session.id,
            },
        )
        return CheckoutSession(url=session.url, session_id=session.id)

    async def create_portal_session(self, account: Account) -> str:
        """
        Billing portal URL for an account with a Stripe customer.

        Raises:
            BillingNotConfiguredError: If Stripe is not configured
            PortalError: If the account has no Stripe customer or Stripe fails
        """
        if not self.is_enabled:
            raise BillingNotConfiguredError("Stripe not configured")

        subscription = await self.db.get_subscription(account.account_id)
        has_customer = (
            isinstance(subscription, SubscriptionRecord) and subscription.external_customer_id
        )
        if not has_customer:
            raise PortalError("No billing account found")

        try:
            session = stripe.billing_portal.Session.create(
                customer=subscription.external_customer_id,
                return_url=self.config.portal_return_url,
            )
        except stripe.StripeError as e:
            logger.error(
                "Failed to create portal session",
                extra={"account_id": account.account_id, "error": str(e)},
            )
            raise PortalError(f"Failed to create portal session: {e}") from e

        return session.url
