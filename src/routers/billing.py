"""
Billing API endpoints.

Provides:
- Stripe webhook receiver
- Checkout and billing portal session creation
- Subscription, usage and plan reads for the UI

Security:
- Webhook authenticated by Stripe signature
- User endpoints take the account from the identity gateway (X-Account-ID)
- Checkout and portal rate limited per account
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.auth import get_current_account
from src.billing.dependencies import (
    get_plan_catalog,
    get_quota_enforcer,
    get_stripe_service,
    get_webhook_reconciler,
)
from src.billing.plan_catalog import PlanCatalog
from src.billing.quota import QuotaEnforcer
from src.billing.stripe_service import (
    BillingNotConfiguredError,
    CheckoutError,
    PortalError,
    StripeService,
)
from src.billing.webhooks import Rejected, WebhookReconciler
from src.models.account import Account
from src.models.subscription import SubscriptionRecord
from src.rate_limits import checkout_rate_limit, limiter
from src.storage.database import BillingDatabase, get_billing_db
from src.utils.timestamps import ms_to_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["Billing"])


# Request / response models
class CheckoutRequest(BaseModel):
    plan_id: str = Field(..., min_length=1)


class CheckoutResponse(BaseModel):
    url: str
    session_id: str


class PortalResponse(BaseModel):
    url: str


class SubscriptionResponse(BaseModel):
    """Subscription state as shown on the subscription page."""

    account_id: str
    has_subscription: bool
    status: Optional[str] = None
    plan_id: str
    effective_plan_id: str
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    current_period_end_iso: Optional[str] = None
    cancel_at_period_end: bool = False


class UsageResponse(BaseModel):
    """Page usage for the current billing cycle."""

    account_id: str
    plan_id: str
    used: int
    limit: int
    remaining: int
    usage_percentage: float
    cycle_start: int
    cycle_end: int
    cycle_start_iso: Optional[str]
    cycle_end_iso: Optional[str]


class PlanResponse(BaseModel):
    plan_id: str
    name: str
    description: str
    monthly_page_limit: int
    price_cents: int
    interval: str
    features: list[str]
    popular: bool


# Webhook


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
) -> JSONResponse:
    """
    Receive Stripe webhook deliveries.

    Returns:
        200 {"received": true} when accepted
        400 for invalid signature or payload
        503 when storage or configuration is unavailable (Stripe retries)
    """
    raw_body = await request.body()
    outcome = await reconciler.handle(raw_body, stripe_signature)

    if isinstance(outcome, Rejected):
        return JSONResponse(
            status_code=outcome.http_status,
            content={"received": False, "error": outcome.reason.value, "detail": outcome.detail},
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"received": True, "duplicate": outcome.duplicate},
    )


# Checkout and portal


@router.post("/checkout", response_model=CheckoutResponse)
@limiter.limit(checkout_rate_limit)
async def create_checkout(
    request: Request,
    checkout: CheckoutRequest,
    account: Account = Depends(get_current_account),
    stripe_service: StripeService = Depends(get_stripe_service),
) -> CheckoutResponse:
    """
    Start Stripe Checkout for a paid plan.

    Raises:
        400: Unknown or free plan, or Stripe rejected the request
        503: Billing not configured
    """
    try:
        session = await stripe_service.create_checkout_session(account, checkout.plan_id)
    except BillingNotConfiguredError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing is not configured",
        )
    except CheckoutError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return CheckoutResponse(url=session.url, session_id=session.session_id)


@router.post("/portal", response_model=PortalResponse)
@limiter.limit(checkout_rate_limit)
async def create_portal(
    request: Request,
    account: Account = Depends(get_current_account),
    stripe_service: StripeService = Depends(get_stripe_service),
) -> PortalResponse:
    """Billing portal URL for managing payment methods and cancellation."""
    try:
        url = await stripe_service.create_portal_session(account)
    except BillingNotConfiguredError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing is not configured",
        )
    except PortalError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return PortalResponse(url=url)


# Reads


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    account: Account = Depends(get_current_account),
    db: BillingDatabase = Depends(get_billing_db),
    catalog: PlanCatalog = Depends(get_plan_catalog),
) -> SubscriptionResponse:
    subscription = await db.get_subscription(account.account_id)
    effective_plan_id = catalog.get(subscription.effective_plan_id).plan_id

    if not isinstance(subscription, SubscriptionRecord):
        return SubscriptionResponse(
            account_id=account.account_id,
            has_subscription=False,
            plan_id=effective_plan_id,
            effective_plan_id=effective_plan_id,
        )

    return SubscriptionResponse(
        account_id=account.account_id,
        has_subscription=True,
        status=subscription.status.value,
        plan_id=subscription.plan_id,
        effective_plan_id=effective_plan_id,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        current_period_end_iso=ms_to_iso(subscription.current_period_end),
        cancel_at_period_end=subscription.cancel_at_period_end,
    )


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    account: Account = Depends(get_current_account),
    enforcer: QuotaEnforcer = Depends(get_quota_enforcer),
) -> UsageResponse:
    snapshot = await enforcer.usage_for(account.account_id)
    return UsageResponse(**snapshot.to_response())


@router.get("/plans", response_model=list[PlanResponse])
async def list_plans(catalog: PlanCatalog = Depends(get_plan_catalog)) -> list[PlanResponse]:
    return [
        PlanResponse(
            plan_id=plan.plan_id,
            name=plan.name,
            description=plan.description,
            monthly_page_limit=plan.monthly_page_limit,
            price_cents=plan.price_cents,
            interval=plan.interval,
            features=plan.features,
            popular=plan.popular,
        )
        for plan in catalog.plans()
    ]
