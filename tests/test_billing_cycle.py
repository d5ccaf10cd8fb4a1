"""
Tests for billing cycle calculation.
"""

import pytest

from src.billing.billing_cycle import cycle_for, rolling_cycle
from src.models.account import Account
from src.models.subscription import NoSubscription, SubscriptionRecord, SubscriptionStatus
from src.utils.timestamps import DAY_MS
from tests.stripe_payloads import T0

CYCLE = 30 * DAY_MS


@pytest.fixture
def free_account() -> Account:
    return Account(account_id="acme", external_id="user_1", email="a@acme.test", created_at=T0)


def test_first_cycle_starts_at_creation():
    cycle = rolling_cycle(T0, T0 + 5 * DAY_MS)
    assert cycle.start == T0
    assert cycle.end == T0 + CYCLE


def test_cycle_is_half_open():
    """The end instant belongs to the next cycle."""
    at_end = rolling_cycle(T0, T0 + CYCLE)
    assert at_end.start == T0 + CYCLE

    just_before = rolling_cycle(T0, T0 + CYCLE - 1)
    assert just_before.start == T0


def test_rollover_after_many_cycles():
    cycle = rolling_cycle(T0, T0 + 95 * DAY_MS)
    assert cycle.start == T0 + 3 * CYCLE
    assert cycle.contains(T0 + 95 * DAY_MS)


def test_now_before_anchor_uses_first_cycle():
    cycle = rolling_cycle(T0, T0 - DAY_MS)
    assert cycle.start == T0


def test_rolling_cycle_is_deterministic():
    now = T0 + 47 * DAY_MS + 12345
    assert rolling_cycle(T0, now) == rolling_cycle(T0, now)


def test_custom_cycle_length():
    cycle = rolling_cycle(T0, T0 + 8 * DAY_MS, cycle_days=7)
    assert cycle.start == T0 + 7 * DAY_MS
    assert cycle.end == T0 + 14 * DAY_MS


def test_no_subscription_uses_rolling_cycle(free_account: Account):
    cycle = cycle_for(free_account, NoSubscription(account_id="acme"), T0 + 31 * DAY_MS)
    assert cycle.start == T0 + CYCLE


def test_processor_period_used_when_it_contains_now(free_account: Account):
    period_start = T0 + 10 * DAY_MS
    record = SubscriptionRecord(
        account_id="acme",
        external_customer_id="cus_1",
        external_subscription_id="sub_1",
        status=SubscriptionStatus.ACTIVE,
        plan_id="starter",
        current_period_start=period_start,
        current_period_end=period_start + 31 * DAY_MS,
    )

    cycle = cycle_for(free_account, record, period_start + DAY_MS)
    assert (cycle.start, cycle.end) == (period_start, period_start + 31 * DAY_MS)


def test_expired_processor_period_falls_back_to_rolling(free_account: Account):
    record = SubscriptionRecord(
        account_id="acme",
        external_customer_id="cus_1",
        external_subscription_id="sub_1",
        status=SubscriptionStatus.ACTIVE,
        plan_id="starter",
        current_period_start=T0,
        current_period_end=T0 + 10 * DAY_MS,
    )

    cycle = cycle_for(free_account, record, T0 + 12 * DAY_MS)
    assert (cycle.start, cycle.end) == (T0, T0 + CYCLE)


def test_record_without_period_uses_rolling(free_account: Account):
    record = SubscriptionRecord(account_id="acme", external_customer_id="cus_1")
    cycle = cycle_for(free_account, record, T0 + DAY_MS)
    assert cycle.start == T0
