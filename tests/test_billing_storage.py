"""
Tests for billing storage behavior.
"""

import sqlite3

import pytest

from src.models.account import Account
from src.models.subscription import NoSubscription, SubscriptionRecord, SubscriptionStatus
from src.models.usage import UsageRecord
from src.storage.database import BillingDatabase, StorageUnavailableError
from tests.stripe_payloads import T0


def _usage(source_ref: str, amount: int = 1, start: int = T0, end: int = T0 + 1000) -> UsageRecord:
    return UsageRecord(
        account_id="acme", source_ref=source_ref, amount=amount, cycle_start=start, cycle_end=end
    )


@pytest.mark.asyncio
async def test_initialize_is_idempotent(billing_db: BillingDatabase):
    await billing_db.initialize()
    assert await billing_db.ping() is True


@pytest.mark.asyncio
async def test_upsert_account_keeps_created_at(billing_db: BillingDatabase, account: Account):
    updated = await billing_db.upsert_account(
        account.model_copy(update={"email": "billing@acme.test", "created_at": T0 + 5})
    )

    assert updated.created_at == T0
    assert updated.email == "billing@acme.test"


@pytest.mark.asyncio
async def test_external_id_is_unique(billing_db: BillingDatabase, account: Account):
    with pytest.raises(sqlite3.IntegrityError):
        await billing_db.upsert_account(
            Account(account_id="other", external_id=account.external_id, email="o@acme.test")
        )


@pytest.mark.asyncio
async def test_missing_subscription_is_explicit(billing_db: BillingDatabase):
    subscription = await billing_db.get_subscription("acme")

    assert isinstance(subscription, NoSubscription)
    assert subscription.effective_plan_id == "free"


@pytest.mark.asyncio
async def test_save_subscription_round_trip(billing_db: BillingDatabase, account: Account):
    record = SubscriptionRecord(
        account_id="acme",
        external_customer_id="cus_1",
        external_subscription_id="sub_1",
        status=SubscriptionStatus.TRIALING,
        plan_id="pro",
        current_period_start=T0,
        current_period_end=T0 + 1000,
        cancel_at_period_end=True,
        last_applied_event_at=T0,
    )

    await billing_db.save_subscription(record, action="TEST")

    stored = await billing_db.get_subscription_by_external_id("sub_1")
    assert stored == record
    assert stored.effective_plan_id == "pro"


@pytest.mark.asyncio
async def test_subscription_id_linked_to_one_account(billing_db: BillingDatabase):
    first = SubscriptionRecord(
        account_id="acme", external_customer_id="cus_1", external_subscription_id="sub_1"
    )
    await billing_db.save_subscription(first)

    with pytest.raises(sqlite3.IntegrityError):
        await billing_db.save_subscription(first.model_copy(update={"account_id": "globex"}))


@pytest.mark.asyncio
async def test_unlinked_lookup_ignores_linked_rows(billing_db: BillingDatabase):
    await billing_db.save_subscription(
        SubscriptionRecord(
            account_id="acme", external_customer_id="cus_1", external_subscription_id="sub_1"
        )
    )

    assert await billing_db.get_unlinked_subscription_by_customer("cus_1") is None


@pytest.mark.asyncio
async def test_usage_insert_is_unique_per_source_ref(billing_db: BillingDatabase):
    assert await billing_db.insert_usage_record(_usage("doc_1", 2)) is True
    assert await billing_db.insert_usage_record(_usage("doc_1", 5)) is False

    assert (await billing_db.get_usage_record("acme", "doc_1")).amount == 2


@pytest.mark.asyncio
async def test_sum_usage_matches_exact_window(billing_db: BillingDatabase):
    await billing_db.insert_usage_record(_usage("doc_1", 2))
    await billing_db.insert_usage_record(_usage("doc_2", 3, end=T0 + 2000))

    assert await billing_db.sum_usage("acme", T0, T0 + 1000) == 2
    assert await billing_db.sum_usage("acme", T0, T0 + 2000) == 3
    assert await billing_db.sum_usage("acme", T0 + 1, T0 + 1000) == 0


@pytest.mark.asyncio
async def test_record_applied_event_once(billing_db: BillingDatabase):
    assert await billing_db.record_applied_event("evt_1", "invoice.paid") is True
    assert await billing_db.record_applied_event("evt_1", "invoice.paid") is False
    assert await billing_db.is_event_applied("evt_1") is True


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(billing_db: BillingDatabase):
    with pytest.raises(RuntimeError):
        with billing_db.transaction():
            await billing_db.record_applied_event("evt_1", "invoice.paid")
            await billing_db.insert_usage_record(_usage("doc_1"))
            raise RuntimeError("abort")

    assert await billing_db.is_event_applied("evt_1") is False
    assert await billing_db.get_usage_record("acme", "doc_1") is None


@pytest.mark.asyncio
async def test_nested_transaction_joins_outer(billing_db: BillingDatabase):
    with billing_db.transaction():
        with billing_db.transaction():
            await billing_db.record_applied_event("evt_1", "invoice.paid")
        await billing_db.record_applied_event("evt_2", "invoice.paid")

    assert await billing_db.is_event_applied("evt_1") is True
    assert await billing_db.is_event_applied("evt_2") is True


@pytest.mark.asyncio
async def test_operational_errors_become_storage_unavailable(billing_db: BillingDatabase):
    conn = billing_db._get_connection()
    conn.execute("DROP TABLE applied_webhook_events")

    with pytest.raises(StorageUnavailableError):
        await billing_db.is_event_applied("evt_1")
