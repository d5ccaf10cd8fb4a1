"""
Billing cycle calculator.

Paid subscriptions use the period Stripe reports. Everything else uses a
rolling window anchored at account creation, computed purely from
(created_at, now) so every process agrees on the boundaries.
"""

from src.models.account import Account
from src.models.subscription import Subscription, SubscriptionRecord
from src.models.usage import BillingCycle
from src.utils.timestamps import DAY_MS

DEFAULT_CYCLE_DAYS = 30


def rolling_cycle(anchor: int, now: int, cycle_days: int = DEFAULT_CYCLE_DAYS) -> BillingCycle:
    """
    Half-open rolling window containing now.

    Instants before the anchor fall into the first window.
    """
    length = cycle_days * DAY_MS
    index = max(0, (now - anchor) // length)
    start = anchor + index * length
    return BillingCycle(start=start, end=start + length)


def cycle_for(
    account: Account,
    subscription: Subscription | None,
    now: int,
    cycle_days: int = DEFAULT_CYCLE_DAYS,
) -> BillingCycle:
    """
    Compute the [start, end) billing window for an account at an instant.

    Args:
        account: Account whose created_at anchors the rolling window
        subscription: Stored subscription, NoSubscription or None
        now: Instant in epoch milliseconds
        cycle_days: Rolling window length

    Returns:
        BillingCycle: The processor period if it contains now, else the
        rolling window
    """
    if isinstance(subscription, SubscriptionRecord) and subscription.period_contains(now):
        return BillingCycle(
            start=subscription.current_period_start,
            end=subscription.current_period_end,
        )

    return rolling_cycle(account.created_at, now, cycle_days)
