"""
Stripe object payloads used to build webhook deliveries in tests.
"""

from src.utils.timestamps import DAY_MS

STARTER_PRICE = "price_starter_monthly"
PRO_PRICE = "price_pro_monthly"

# 2025-01-01T00:00:00Z
T0 = 1_735_689_600_000


def checkout_completed_object(
    account_id: str = "acme",
    customer_id: str = "cus_123",
    subscription_id: str = "sub_123",
    plan_id: str = "starter",
    mode: str = "subscription",
) -> dict:
    return {
        "id": "cs_test_123",
        "object": "checkout.session",
        "mode": mode,
        "payment_status": "paid",
        "customer": customer_id,
        "subscription": subscription_id,
        "client_reference_id": account_id,
        "metadata": {"account_id": account_id, "plan_id": plan_id},
    }


def subscription_object(
    subscription_id: str = "sub_123",
    customer_id: str = "cus_123",
    status: str = "active",
    price_id: str = STARTER_PRICE,
    period_start_s: int = T0 // 1000,
    period_days: int = 30,
    cancel_at_period_end: bool = False,
) -> dict:
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer_id,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "current_period_start": period_start_s,
        "current_period_end": period_start_s + period_days * DAY_MS // 1000,
        "items": {"data": [{"price": {"id": price_id, "lookup_key": None}}]},
    }


def invoice_object(subscription_id: str = "sub_123", customer_id: str = "cus_123") -> dict:
    return {
        "id": "in_123",
        "object": "invoice",
        "customer": customer_id,
        "subscription": subscription_id,
        "attempt_count": 1,
    }


