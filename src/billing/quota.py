"""
Quota enforcement.

The document pipeline asks before a metered operation whether the account
has enough pages left, then records actual usage once the operation has
produced billable output. Denials are structured results with the exact
numbers, never exceptions.
"""

import logging

from src.billing.billing_cycle import DEFAULT_CYCLE_DAYS, cycle_for
from src.billing.credit_ledger import CreditLedger
from src.billing.plan_catalog import PlanCatalog
from src.models.account import Account
from src.models.subscription import Subscription
from src.models.usage import (
    AppendResult,
    BillingCycle,
    QuotaAllowed,
    QuotaDecision,
    QuotaDenied,
    UsageSnapshot,
)
from src.observability.metrics import track_quota_decision, track_usage_append
from src.storage.database import BillingDatabase
from src.utils.timestamps import now_ms

logger = logging.getLogger(__name__)

ACCOUNT_NOT_FOUND = "Account not found"


class AccountNotFoundError(LookupError):
    """Quota operation for an account that billing does not know."""

    pass


def insufficient_pages_reason(remaining: int, required: int) -> str:
    return (
        f"Insufficient pages. You have {remaining} pages remaining, "
        f"but {required} are required."
    )


class QuotaEnforcer:
    """
    Check and record page usage against the effective plan.

    Soft limit by default: the check and the later append are separate, so
    concurrent operations can overdraw slightly. With strict=True the append
    is refused when it would exceed the limit.
    """

    def __init__(
        self,
        db: BillingDatabase,
        catalog: PlanCatalog,
        ledger: CreditLedger | None = None,
        cycle_days: int = DEFAULT_CYCLE_DAYS,
        strict: bool = False,
    ):
        self.db = db
        self.catalog = catalog
        self.ledger = ledger or CreditLedger(db, catalog)
        self.cycle_days = cycle_days
        self.strict = strict

    async def check_and_reserve(
        self, account_id: str, required_pages: int, now: int | None = None
    ) -> QuotaDecision:
        """
        Decide whether an operation needing required_pages may start.

        Args:
            account_id: Account about to run a metered operation
            required_pages: Pages the operation will consume (>= 1)
            now: Evaluation instant in epoch ms (defaults to now)

        Returns:
            QuotaAllowed or QuotaDenied, both carrying the usage snapshot

        Raises:
            ValueError: If required_pages < 1
        """
        if isinstance(required_pages, bool) or required_pages < 1:
            raise ValueError(f"required_pages must be at least 1, got {required_pages!r}")

        account = await self.db.get_account(account_id)
        if account is None:
            logger.warning("Quota check for unknown account", extra={"account_id": account_id})
            return QuotaDenied(reason=ACCOUNT_NOT_FOUND)

        usage = await self._snapshot(account, now)

        if usage.remaining < required_pages:
            reason = insufficient_pages_reason(usage.remaining, required_pages)
            logger.info(
                "Quota denied",
                extra={
                    "account_id": account_id,
                    "plan_id": usage.plan_id,
                    "remaining": usage.remaining,
                    "required": required_pages,
                },
            )
            track_quota_decision(usage.plan_id, allowed=False)
            return QuotaDenied(reason=reason, usage=usage)

        track_quota_decision(usage.plan_id, allowed=True)
        return QuotaAllowed(usage=usage)

    async def record_usage(
        self, account_id: str, pages: int, source_ref: str, now: int | None = None
    ) -> AppendResult:
        """
        Append usage for a completed operation to the current cycle.

        Repeats for the same source_ref are no-ops.

        Raises:
            AccountNotFoundError: If the account does not exist
            ValueError: If pages is not a positive integer
        """
        account = await self._require_account(account_id)
        subscription = await self.db.get_subscription(account_id)
        cycle = self._cycle(account, subscription, now)

        limit = None
        plan_id = subscription.effective_plan_id
        if self.strict:
            snapshot = await self.ledger.usage(account, cycle, subscription)
            limit = snapshot.limit
            plan_id = snapshot.plan_id

        result = await self.ledger.append(account, cycle, pages, source_ref, limit=limit)

        if result.recorded:
            outcome = "recorded"
        elif result.over_limit:
            outcome = "over_limit"
        else:
            outcome = "duplicate"
        track_usage_append(plan_id, pages, outcome)
        return result

    async def usage_for(self, account_id: str, now: int | None = None) -> UsageSnapshot:
        """
        Current-cycle usage snapshot for display.

        Raises:
            AccountNotFoundError: If the account does not exist
        """
        account = await self._require_account(account_id)
        return await self._snapshot(account, now)

    async def _snapshot(self, account: Account, now: int | None) -> UsageSnapshot:
        subscription = await self.db.get_subscription(account.account_id)
        cycle = self._cycle(account, subscription, now)
        return await self.ledger.usage(account, cycle, subscription)

    def _cycle(self, account: Account, subscription: Subscription, now: int | None) -> BillingCycle:
        return cycle_for(
            account,
            subscription,
            now if now is not None else now_ms(),
            cycle_days=self.cycle_days,
        )

    async def _require_account(self, account_id: str) -> Account:
        account = await self.db.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return account
