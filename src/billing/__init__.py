"""
Billing and subscription management.

Components:
- Plan catalog (plan limits and Stripe price mapping)
- Billing cycle calculator
- Credit ledger (append-only page usage)
- Subscription state machine
- Stripe webhook reconciler
- Quota enforcer
- Stripe checkout and billing portal
"""

from src.billing.billing_cycle import cycle_for
from src.billing.credit_ledger import CreditLedger
from src.billing.plan_catalog import PlanCatalog
from src.billing.quota import AccountNotFoundError, QuotaEnforcer
from src.billing.stripe_service import (
    BillingNotConfiguredError,
    CheckoutError,
    PortalError,
    StripeService,
)
from src.billing.subscription_state import SubscriptionStateMachine, TransitionResult
from src.billing.webhooks import Accepted, Rejected, RejectReason, WebhookReconciler

__all__ = [
    "cycle_for",
    "CreditLedger",
    "PlanCatalog",
    "QuotaEnforcer",
    "AccountNotFoundError",
    "StripeService",
    "CheckoutError",
    "PortalError",
    "BillingNotConfiguredError",
    "SubscriptionStateMachine",
    "TransitionResult",
    "WebhookReconciler",
    "Accepted",
    "Rejected",
    "RejectReason",
]
