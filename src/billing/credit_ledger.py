"""
Credit ledger.

Append-only page usage records plus the derived used/limit/remaining view for
one billing cycle. Records keep the cycle window they were written under, so
a mid-cycle plan change never reclassifies earlier usage.
"""

import logging

from src.billing.plan_catalog import PlanCatalog
from src.models.account import Account
from src.models.subscription import Subscription
from src.models.usage import AppendResult, BillingCycle, UsageRecord, UsageSnapshot
from src.storage.database import BillingDatabase
from src.utils.timestamps import now_ms

logger = logging.getLogger(__name__)


class CreditLedger:
    """
    Page usage ledger.

    Responsibilities:
    - Sum usage for an exact cycle window
    - Append usage idempotently per (account, source_ref)
    - Optionally refuse appends that would exceed a limit (strict mode)
    """

    def __init__(self, db: BillingDatabase, catalog: PlanCatalog):
        """
        Initialize ledger.

        Args:
            db: Billing database
            catalog: Plan catalog used to resolve the effective limit
        """
        self.db = db
        self.catalog = catalog

    async def usage(
        self,
        account: Account,
        cycle: BillingCycle,
        subscription: Subscription | None = None,
    ) -> UsageSnapshot:
        """
        Used/limit/remaining for one cycle.

        Args:
            account: Account to summarize
            cycle: Window to sum; only records stored with exactly this window count
            subscription: Current subscription; loaded from storage if omitted

        Returns:
            UsageSnapshot: limit comes from the effective plan right now
        """
        if subscription is None:
            subscription = await self.db.get_subscription(account.account_id)

        plan_id = subscription.effective_plan_id
        if not self.catalog.has(plan_id):
            plan_id = self.catalog.free.plan_id
        limit = self.catalog.limit_for(plan_id)

        used = await self.db.sum_usage(account.account_id, cycle.start, cycle.end)

        return UsageSnapshot(
            account_id=account.account_id,
            plan_id=plan_id,
            used=used,
            limit=limit,
            remaining=max(0, limit - used),
            cycle_start=cycle.start,
            cycle_end=cycle.end,
        )

    async def append(
        self,
        account: Account,
        cycle: BillingCycle,
        amount: int,
        source_ref: str,
        limit: int | None = None,
    ) -> AppendResult:
        """
        Record pages consumed by one completed operation.

        A repeat for the same source_ref is a successful no-op. With a limit,
        the sum and the insert run in one write transaction and the append is
        refused if it would take usage past the limit.

        Args:
            account: Account that consumed the pages
            cycle: Window the usage is attributed to (stored verbatim)
            amount: Pages consumed, positive integer
            source_ref: Unit-of-work reference (e.g. document id)
            limit: Hard limit for strict mode, None for soft

        Returns:
            AppendResult: recorded / duplicate / over_limit

        Raises:
            ValueError: If amount is not a positive integer or source_ref is empty
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValueError(f"amount must be a positive integer, got {amount!r}")
        if not source_ref:
            raise ValueError("source_ref is required")

        record = UsageRecord(
            account_id=account.account_id,
            source_ref=source_ref,
            amount=amount,
            cycle_start=cycle.start,
            cycle_end=cycle.end,
            recorded_at=now_ms(),
        )

        if limit is None:
            if await self.db.insert_usage_record(record):
                return self._result(record, inserted=True)
            existing = await self.db.get_usage_record(account.account_id, source_ref)
            return self._result(existing or record, inserted=False)

        with self.db.transaction():
            existing = await self.db.get_usage_record(account.account_id, source_ref)
            if existing is not None:
                return self._result(existing, inserted=False)

            used = await self.db.sum_usage(account.account_id, cycle.start, cycle.end)
            if used + amount > limit:
                logger.info(
                    "Usage append refused, limit reached",
                    extra={
                        "account_id": account.account_id,
                        "source_ref": source_ref,
                        "used": used,
                        "amount": amount,
                        "limit": limit,
                    },
                )
                return AppendResult(recorded=False, over_limit=True)

            inserted = await self.db.insert_usage_record(record)

        return self._result(record, inserted)

    def _result(self, record: UsageRecord, inserted: bool) -> AppendResult:
        if not inserted:
            logger.info(
                "Duplicate usage append ignored",
                extra={"account_id": record.account_id, "source_ref": record.source_ref},
            )
            return AppendResult(recorded=False, duplicate=True, record=record)

        logger.info(
            "Usage recorded",
            extra={
                "account_id": record.account_id,
                "source_ref": record.source_ref,
                "amount": record.amount,
                "cycle_start": record.cycle_start,
                "cycle_end": record.cycle_end,
            },
        )
        return AppendResult(recorded=True, record=record)
