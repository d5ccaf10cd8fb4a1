"""
Subscription state machine.

States: NONE (no row) → INCOMPLETE → ACTIVE → {PAST_DUE, CANCELED};
PAST_DUE → ACTIVE or CANCELED. CANCELED is terminal for a Stripe subscription
id; a new checkout links a fresh one.

Every transition writes absolute values taken from the event, records the
event time, and skips events older than the last one applied. Missing rows
and unusable payloads are logged no-ops so Stripe never retries them.
"""

import logging

from pydantic import BaseModel

from src.billing.plan_catalog import PlanCatalog
from src.models.plan import FREE_PLAN_ID
from src.models.subscription import (
    SubscriptionRecord,
    SubscriptionStatus,
)
from src.observability.metrics import track_subscription_transition
from src.storage.database import BillingDatabase
from src.utils.timestamps import now_ms

logger = logging.getLogger(__name__)


class TransitionResult(BaseModel):
    """Outcome of one transition; reason is set for no-ops."""

    applied: bool
    reason: str | None = None
    subscription: SubscriptionRecord | None = None


class SubscriptionStateMachine:
    """
    Apply Stripe-reported lifecycle changes to subscription rows.

    Lookup is by Stripe subscription id. The customer id is only used for
    the first linkage, matching a row that has no subscription id yet.
    """

    def __init__(self, db: BillingDatabase, catalog: PlanCatalog):
        """
        Initialize state machine.

        Args:
            db: Billing database
            catalog: Plan catalog for price and plan validation
        """
        self.db = db
        self.catalog = catalog

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def on_checkout_started(
        self, account_id: str, customer_id: str, plan_id: str
    ) -> TransitionResult:
        """
        Create the optimistic INCOMPLETE row when checkout begins.

        Only an account with no row, or a canceled one, gets a fresh row. A
        live row keeps its state and is only linked to the customer.
        """
        current = await self.db.get_subscription(account_id)
        now = now_ms()

        has_row = isinstance(current, SubscriptionRecord)
        if has_row and current.status != SubscriptionStatus.CANCELED:
            if current.external_customer_id == customer_id:
                return self._noop("checkout_started", "row_exists", current)
            record = current.model_copy(
                update={"external_customer_id": customer_id, "updated_at": now}
            )
            await self.db.save_subscription(record, action="CUSTOMER_LINKED")
            return self._applied("checkout_started", record)

        record = SubscriptionRecord(
            account_id=account_id,
            external_customer_id=customer_id,
            external_subscription_id=None,
            status=SubscriptionStatus.INCOMPLETE,
            plan_id=plan_id if self.catalog.has(plan_id) else FREE_PLAN_ID,
            # The canceled subscription's last period bounds usage until it ends
            current_period_start=current.current_period_start if has_row else None,
            current_period_end=current.current_period_end if has_row else None,
            last_applied_event_at=current.last_applied_event_at if has_row else None,
            created_at=now,
            updated_at=now,
        )
        await self.db.save_subscription(record, action="CHECKOUT_STARTED")

        logger.info(
            "Checkout started, subscription row is incomplete",
            extra={"account_id": account_id, "plan_id": record.plan_id},
        )
        return self._applied("checkout_started", record)

    async def on_checkout_completed(
        self,
        customer_id: str | None,
        subscription_id: str | None,
        account_id: str | None,
        plan_hint: str | None,
        price_id: str | None = None,
        status: str | SubscriptionStatus | None = None,
        event_at: int | None = None,
    ) -> TransitionResult:
        """
        Link a completed Checkout Session to the account.

        Plan comes from the line-item price, then the plan hint carried in
        session metadata, then free.

        Args:
            customer_id: Stripe customer id
            subscription_id: Stripe subscription id created by checkout
            account_id: Account id from session metadata / client_reference_id
            plan_hint: Plan id requested when checkout started
            price_id: Line-item price id, when the payload carries one
            status: Subscription status if known (defaults to active, or the
                status already stored for this subscription)
            event_at: Event time in epoch ms

        Returns:
            TransitionResult
        """
        transition = "checkout_completed"

        if not account_id:
            logger.warning(
                "Checkout completed without account metadata",
                extra={"stripe_customer_id": customer_id, "subscription_id": subscription_id},
            )
            return self._noop(transition, "missing_account")

        if not customer_id:
            logger.warning(
                "Checkout completed without a customer",
                extra={"account_id": account_id, "subscription_id": subscription_id},
            )
            return self._noop(transition, "missing_customer")

        current = await self.db.get_subscription(account_id)
        existing = current if isinstance(current, SubscriptionRecord) else None
        if existing is not None and self._is_stale(existing, event_at):
            return self._stale(transition, existing, event_at)

        same_linkage = (
            existing is not None
            and subscription_id is not None
            and existing.external_subscription_id == subscription_id
        )

        # A subscription update already applied to this linkage knows the
        # processor's status and plan better than the session does.
        if same_linkage:
            plan_id = self._plan_from_price(price_id) or existing.plan_id
            new_status = self._status(status, existing.status)
        else:
            plan_id = self._plan_from_checkout(price_id, plan_hint)
            new_status = self._status(status, SubscriptionStatus.ACTIVE)
        now = now_ms()

        record = SubscriptionRecord(
            account_id=account_id,
            external_customer_id=customer_id,
            external_subscription_id=subscription_id,
            status=new_status,
            plan_id=plan_id,
            current_period_start=existing.current_period_start if existing else None,
            current_period_end=existing.current_period_end if existing else None,
            cancel_at_period_end=existing.cancel_at_period_end if same_linkage else False,
            last_applied_event_at=self._event_marker(existing, event_at),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        await self.db.save_subscription(record, action="CHECKOUT_COMPLETED")

        previous_plan = existing.effective_plan_id if existing else FREE_PLAN_ID
        logger.info(
            "Checkout completed, subscription linked",
            extra={
                "account_id": account_id,
                "subscription_id": subscription_id,
                "plan_id": plan_id,
                "previous_plan_id": previous_plan,
                "status": new_status.value,
            },
        )
        return self._applied(transition, record)

    # ------------------------------------------------------------------
    # Subscription lifecycle
    # ------------------------------------------------------------------

    async def on_subscription_updated(
        self,
        subscription_id: str,
        status: str | SubscriptionStatus | None,
        plan_id: str | None,
        period_start: int | None,
        period_end: int | None,
        cancel_at_period_end: bool,
        customer_id: str | None = None,
        event_at: int | None = None,
    ) -> TransitionResult:
        """
        Overwrite status, plan and period with the values Stripe reports.

        Updates can race ahead of checkout completion; a missing row is a
        logged no-op and the later checkout event creates it.
        """
        transition = "subscription_updated"

        current = await self._find(subscription_id, customer_id)
        if current is None:
            return self._missing(transition, subscription_id, customer_id)
        if self._is_stale(current, event_at):
            return self._stale(transition, current, event_at)

        if plan_id is None:
            new_plan = current.plan_id
        elif self.catalog.has(plan_id):
            new_plan = plan_id
        else:
            logger.warning(
                "Subscription update references unknown plan, using free tier",
                extra={"subscription_id": subscription_id, "plan_id": plan_id},
            )
            new_plan = FREE_PLAN_ID

        start, end = self._valid_period(current, period_start, period_end)

        record = current.model_copy(
            update={
                "external_subscription_id": subscription_id,
                "status": self._status(status, current.status),
                "plan_id": new_plan,
                "current_period_start": start,
                "current_period_end": end,
                "cancel_at_period_end": bool(cancel_at_period_end),
                "last_applied_event_at": self._event_marker(current, event_at),
                "updated_at": now_ms(),
            }
        )
        await self.db.save_subscription(record, action="SUBSCRIPTION_UPDATED")

        if record.cancel_at_period_end and not current.cancel_at_period_end:
            logger.warning(
                "Subscription scheduled for cancellation",
                extra={"account_id": record.account_id, "subscription_id": subscription_id},
            )

        logger.info(
            "Subscription updated",
            extra={
                "account_id": record.account_id,
                "subscription_id": subscription_id,
                "status": record.status.value,
                "plan_id": record.plan_id,
            },
        )
        return self._applied(transition, record)

    async def on_subscription_deleted(
        self,
        subscription_id: str,
        period_start: int | None = None,
        period_end: int | None = None,
        event_at: int | None = None,
    ) -> TransitionResult:
        """Cancel the subscription and drop the account to the free tier."""
        transition = "subscription_deleted"

        current = await self._find(subscription_id)
        if current is None:
            return self._missing(transition, subscription_id)
        if self._is_stale(current, event_at):
            return self._stale(transition, current, event_at)

        start, end = self._valid_period(current, period_start, period_end)

        record = current.model_copy(
            update={
                "status": SubscriptionStatus.CANCELED,
                "plan_id": FREE_PLAN_ID,
                "cancel_at_period_end": True,
                "current_period_start": start,
                "current_period_end": end,
                "last_applied_event_at": self._event_marker(current, event_at),
                "updated_at": now_ms(),
            }
        )
        await self.db.save_subscription(record, action="SUBSCRIPTION_DELETED")

        logger.warning(
            "Subscription cancelled, downgraded to free",
            extra={
                "account_id": record.account_id,
                "subscription_id": subscription_id,
                "previous_plan_id": current.plan_id,
            },
        )
        return self._applied(transition, record)

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    async def on_invoice_payment_succeeded(
        self, subscription_id: str | None, event_at: int | None = None
    ) -> TransitionResult:
        """Recover PAST_DUE or INCOMPLETE to ACTIVE; other states are unchanged."""
        transition = "invoice_payment_succeeded"

        if not subscription_id:
            return self._noop(transition, "no_subscription")

        current = await self._find(subscription_id)
        if current is None:
            return self._missing(transition, subscription_id)
        if self._is_stale(current, event_at):
            return self._stale(transition, current, event_at)

        if current.status not in (SubscriptionStatus.PAST_DUE, SubscriptionStatus.INCOMPLETE):
            return self._noop(transition, "status_unchanged", current)

        record = current.model_copy(
            update={
                "status": SubscriptionStatus.ACTIVE,
                "last_applied_event_at": self._event_marker(current, event_at),
                "updated_at": now_ms(),
            }
        )
        await self.db.save_subscription(record, action="PAYMENT_SUCCEEDED")

        logger.info(
            "Payment succeeded, subscription reactivated",
            extra={
                "account_id": record.account_id,
                "subscription_id": subscription_id,
                "previous_status": current.status.value,
            },
        )
        return self._applied(transition, record)

    async def on_invoice_payment_failed(
        self, subscription_id: str | None, event_at: int | None = None
    ) -> TransitionResult:
        """Mark the subscription PAST_DUE. Canceled subscriptions stay canceled."""
        transition = "invoice_payment_failed"

        if not subscription_id:
            return self._noop(transition, "no_subscription")

        current = await self._find(subscription_id)
        if current is None:
            return self._missing(transition, subscription_id)
        if self._is_stale(current, event_at):
            return self._stale(transition, current, event_at)

        if current.status == SubscriptionStatus.CANCELED:
            return self._noop(transition, "subscription_canceled", current)

        record = current.model_copy(
            update={
                "status": SubscriptionStatus.PAST_DUE,
                "last_applied_event_at": self._event_marker(current, event_at),
                "updated_at": now_ms(),
            }
        )
        await self.db.save_subscription(record, action="PAYMENT_FAILED")

        logger.error(
            "Payment failed, subscription past due",
            extra={"account_id": record.account_id, "subscription_id": subscription_id},
        )
        return self._applied(transition, record)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _find(
        self, subscription_id: str, customer_id: str | None = None
    ) -> SubscriptionRecord | None:
        record = await self.db.get_subscription_by_external_id(subscription_id)
        if record is None and customer_id:
            record = await self.db.get_unlinked_subscription_by_customer(customer_id)
        return record

    def _plan_from_price(self, price_id: str | None) -> str | None:
        if price_id:
            resolved = self.catalog.resolve_plan_id(price_id)
            if resolved != FREE_PLAN_ID:
                return resolved
        return None

    def _plan_from_checkout(self, price_id: str | None, plan_hint: str | None) -> str:
        resolved = self._plan_from_price(price_id)
        if resolved:
            return resolved

        if self.catalog.has(plan_hint):
            return plan_hint

        if plan_hint:
            logger.warning(
                "Checkout plan hint not in catalog, using free tier",
                extra={"plan_hint": plan_hint},
            )
        return FREE_PLAN_ID

    @staticmethod
    def _status(
        value: str | SubscriptionStatus | None, fallback: SubscriptionStatus
    ) -> SubscriptionStatus:
        if isinstance(value, SubscriptionStatus):
            return value
        if value is None:
            return fallback
        return SubscriptionStatus.from_processor(value)

    @staticmethod
    def _valid_period(
        current: SubscriptionRecord, start: int | None, end: int | None
    ) -> tuple[int | None, int | None]:
        """Reported period if well-formed, otherwise the stored one."""
        if start is None or end is None:
            return current.current_period_start, current.current_period_end
        if end <= start:
            logger.warning(
                "Ignoring malformed subscription period",
                extra={"account_id": current.account_id, "start": start, "end": end},
            )
            return current.current_period_start, current.current_period_end
        return start, end

    @staticmethod
    def _is_stale(current: SubscriptionRecord, event_at: int | None) -> bool:
        return (
            event_at is not None
            and current.last_applied_event_at is not None
            and event_at < current.last_applied_event_at
        )

    @staticmethod
    def _event_marker(current: SubscriptionRecord | None, event_at: int | None) -> int | None:
        previous = current.last_applied_event_at if current else None
        if event_at is None:
            return previous
        if previous is None:
            return event_at
        return max(previous, event_at)

    def _applied(self, transition: str, record: SubscriptionRecord) -> TransitionResult:
        track_subscription_transition(transition, "applied")
        return TransitionResult(applied=True, subscription=record)

    def _noop(
        self, transition: str, reason: str, record: SubscriptionRecord | None = None
    ) -> TransitionResult:
        track_subscription_transition(transition, reason)
        return TransitionResult(applied=False, reason=reason, subscription=record)

    def _missing(
        self, transition: str, subscription_id: str, customer_id: str | None = None
    ) -> TransitionResult:
        logger.info(
            "No subscription row for event, skipping",
            extra={
                "transition": transition,
                "subscription_id": subscription_id,
                "stripe_customer_id": customer_id,
            },
        )
        return self._noop(transition, "missing_row")

    def _stale(
        self, transition: str, current: SubscriptionRecord, event_at: int | None
    ) -> TransitionResult:
        logger.info(
            "Stale event skipped",
            extra={
                "transition": transition,
                "account_id": current.account_id,
                "event_at": event_at,
                "last_applied_event_at": current.last_applied_event_at,
            },
        )
        return self._noop(transition, "stale_event", current)
