"""
Tests for quota enforcement.
"""

import pytest

from src.billing.quota import ACCOUNT_NOT_FOUND, AccountNotFoundError, QuotaEnforcer
from src.billing.plan_catalog import PlanCatalog
from src.billing.subscription_state import SubscriptionStateMachine
from src.models.account import Account
from src.models.usage import QuotaAllowed, QuotaDenied
from src.storage.database import BillingDatabase
from src.utils.timestamps import DAY_MS, now_ms
from tests.stripe_payloads import T0


@pytest.mark.asyncio
async def test_fresh_free_account_is_allowed(enforcer: QuotaEnforcer, account: Account):
    decision = await enforcer.check_and_reserve("acme", 1, now=T0 + DAY_MS)

    assert isinstance(decision, QuotaAllowed)
    assert decision.usage.remaining == 10


@pytest.mark.asyncio
async def test_usage_resets_when_free_cycle_rolls_over(enforcer: QuotaEnforcer, account: Account):
    day_29 = T0 + 29 * DAY_MS
    await enforcer.record_usage("acme", 5, "doc_1", now=day_29)
    await enforcer.record_usage("acme", 3, "doc_2", now=day_29)

    before = await enforcer.usage_for("acme", now=day_29)
    assert (before.used, before.limit) == (8, 10)

    after = await enforcer.usage_for("acme", now=T0 + 31 * DAY_MS)
    assert (after.used, after.limit) == (0, 10)
    assert after.cycle_start == T0 + 30 * DAY_MS


@pytest.mark.asyncio
async def test_denied_reason_reports_remaining_and_required(
    enforcer: QuotaEnforcer, account: Account
):
    now = T0 + DAY_MS
    await enforcer.record_usage("acme", 5, "doc_1", now=now)

    decision = await enforcer.check_and_reserve("acme", 10, now=now)

    assert isinstance(decision, QuotaDenied)
    assert "5" in decision.reason
    assert "10" in decision.reason
    assert decision.usage.remaining == 5


@pytest.mark.asyncio
async def test_exact_remaining_is_allowed(enforcer: QuotaEnforcer, account: Account):
    now = T0 + DAY_MS
    await enforcer.record_usage("acme", 4, "doc_1", now=now)

    assert (await enforcer.check_and_reserve("acme", 6, now=now)).allowed is True
    assert (await enforcer.check_and_reserve("acme", 7, now=now)).allowed is False


@pytest.mark.asyncio
async def test_unknown_account_is_denied(enforcer: QuotaEnforcer):
    decision = await enforcer.check_and_reserve("ghost", 1)

    assert isinstance(decision, QuotaDenied)
    assert decision.reason == ACCOUNT_NOT_FOUND
    assert decision.usage is None


@pytest.mark.asyncio
async def test_record_usage_for_unknown_account_raises(enforcer: QuotaEnforcer):
    with pytest.raises(AccountNotFoundError):
        await enforcer.record_usage("ghost", 1, "doc_1")


@pytest.mark.asyncio
async def test_required_pages_must_be_positive(enforcer: QuotaEnforcer, account: Account):
    with pytest.raises(ValueError):
        await enforcer.check_and_reserve("acme", 0)


@pytest.mark.asyncio
async def test_soft_limit_allows_overdraft(enforcer: QuotaEnforcer, account: Account):
    now = T0 + DAY_MS
    await enforcer.record_usage("acme", 9, "doc_1", now=now)

    result = await enforcer.record_usage("acme", 5, "doc_2", now=now)

    assert result.recorded is True
    snapshot = await enforcer.usage_for("acme", now=now)
    assert snapshot.used == 14
    assert snapshot.remaining == 0


@pytest.mark.asyncio
async def test_strict_mode_refuses_overdraft(
    billing_db: BillingDatabase, catalog: PlanCatalog, account: Account
):
    strict = QuotaEnforcer(billing_db, catalog, strict=True)
    now = T0 + DAY_MS
    await strict.record_usage("acme", 9, "doc_1", now=now)

    result = await strict.record_usage("acme", 5, "doc_2", now=now)

    assert result.recorded is False
    assert result.over_limit is True
    assert (await strict.usage_for("acme", now=now)).used == 9


@pytest.mark.asyncio
async def test_paid_plan_uses_processor_period_and_limit(
    enforcer: QuotaEnforcer,
    state_machine: SubscriptionStateMachine,
    account: Account,
):
    period_start = T0 + 3 * DAY_MS
    period_end = period_start + 31 * DAY_MS
    await state_machine.on_checkout_completed(
        customer_id="cus_123", subscription_id="sub_123", account_id="acme", plan_hint="starter"
    )
    await state_machine.on_subscription_updated(
        "sub_123", "active", "starter", period_start, period_end, False
    )

    snapshot = await enforcer.usage_for("acme", now=period_start + DAY_MS)

    assert snapshot.plan_id == "starter"
    assert snapshot.limit == 75
    assert (snapshot.cycle_start, snapshot.cycle_end) == (period_start, period_end)


@pytest.mark.asyncio
async def test_usage_before_upgrade_stays_in_its_cycle(
    enforcer: QuotaEnforcer,
    state_machine: SubscriptionStateMachine,
    account: Account,
):
    """Upgrading mid-cycle moves the account onto the processor period."""
    free_day = T0 + 2 * DAY_MS
    await enforcer.record_usage("acme", 7, "doc_free", now=free_day)

    period_start = T0 + 3 * DAY_MS
    await state_machine.on_checkout_completed(
        customer_id="cus_123", subscription_id="sub_123", account_id="acme", plan_hint="pro"
    )
    await state_machine.on_subscription_updated(
        "sub_123", "active", "pro", period_start, period_start + 30 * DAY_MS, False
    )

    snapshot = await enforcer.usage_for("acme", now=period_start + DAY_MS)
    assert snapshot.used == 0
    assert snapshot.limit == 250


@pytest.mark.asyncio
async def test_past_due_keeps_paid_limit(
    enforcer: QuotaEnforcer,
    state_machine: SubscriptionStateMachine,
    account: Account,
):
    await state_machine.on_checkout_completed(
        customer_id="cus_123", subscription_id="sub_123", account_id="acme", plan_hint="pro"
    )
    await state_machine.on_invoice_payment_failed("sub_123")

    snapshot = await enforcer.usage_for("acme")
    assert snapshot.limit == 250


@pytest.mark.asyncio
async def test_abandoned_checkout_keeps_canceled_period_usage(
    enforcer: QuotaEnforcer,
    state_machine: SubscriptionStateMachine,
    account: Account,
):
    """Starting a new checkout does not move usage out of the current cycle."""
    now = now_ms()
    period_start, period_end = now - 5 * DAY_MS, now + 25 * DAY_MS
    await state_machine.on_checkout_completed(
        customer_id="cus_123", subscription_id="sub_123", account_id="acme", plan_hint="starter"
    )
    await state_machine.on_subscription_deleted("sub_123", period_start, period_end)
    await enforcer.record_usage("acme", 10, "doc_1", now=now)

    before = await enforcer.usage_for("acme", now=now)
    await state_machine.on_checkout_started("acme", "cus_123", "starter")
    after = await enforcer.usage_for("acme", now=now)

    assert (before.used, before.remaining) == (10, 0)
    assert (after.used, after.remaining) == (10, 0)
    assert (after.cycle_start, after.cycle_end) == (period_start, period_end)
    assert (await enforcer.check_and_reserve("acme", 1, now=now)).allowed is False
