"""
Stripe webhook reconciler.

Handles Stripe webhook deliveries:
- checkout.session.completed
- customer.subscription.created / updated / deleted
- invoice.payment_succeeded / invoice.paid / invoice.payment_failed

Pipeline: verify signature → parse → de-duplicate by event id → apply the
transition and record the event id in one storage transaction. Only
infrastructure failures reject a delivery; business conditions are accepted
so Stripe does not retry them.
"""

import json
import logging
import sqlite3
import time
from enum import Enum
from typing import Literal

import stripe
from pydantic import BaseModel, ValidationError

from src.billing.plan_catalog import PlanCatalog
from src.billing.subscription_state import SubscriptionStateMachine, TransitionResult
from src.config import StripeConfig
from src.models.events import (
    CheckoutSessionCompleted,
    EventEnvelopeError,
    InvoicePaymentFailed,
    InvoicePaymentSucceeded,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnknownEvent,
    WebhookEvent,
    parse_event,
)
from src.observability.metrics import track_webhook_event
from src.storage.database import BillingDatabase, StorageUnavailableError

logger = logging.getLogger(__name__)


class RejectReason(str, Enum):
    """Why a delivery was rejected."""

    INVALID_SIGNATURE = "invalid_signature"
    INVALID_PAYLOAD = "invalid_payload"
    NOT_CONFIGURED = "not_configured"
    STORAGE_UNAVAILABLE = "storage_unavailable"

    @property
    def http_status(self) -> int:
        if self in (RejectReason.INVALID_SIGNATURE, RejectReason.INVALID_PAYLOAD):
            return 400
        return 503


class WebhookError(Exception):
    """Verification or envelope failure carrying the rejection reason."""

    def __init__(self, reason: RejectReason, message: str):
        super().__init__(message)
        self.reason = reason


class Accepted(BaseModel):
    kind: Literal["accepted"] = "accepted"
    event_id: str
    event_type: str
    duplicate: bool = False
    ignored: bool = False
    transition: TransitionResult | None = None


class Rejected(BaseModel):
    kind: Literal["rejected"] = "rejected"
    reason: RejectReason
    detail: str = ""

    @property
    def http_status(self) -> int:
        return self.reason.http_status


WebhookOutcome = Accepted | Rejected


class WebhookReconciler:
    """
    Verify, de-duplicate and route Stripe events to the state machine.
    """

    def __init__(
        self,
        config: StripeConfig,
        db: BillingDatabase,
        state_machine: SubscriptionStateMachine,
        catalog: PlanCatalog,
    ):
        """
        Initialize reconciler.

        Args:
            config: Stripe configuration (webhook secret and tolerance)
            db: Billing database (de-duplication and transactions)
            state_machine: Subscription state machine
            catalog: Plan catalog for price → plan resolution
        """
        self.config = config
        self.db = db
        self.state_machine = state_machine
        self.catalog = catalog

    async def handle(self, raw_body: bytes, signature_header: str | None) -> WebhookOutcome:
        """
        Process one webhook delivery.

        Args:
            raw_body: Raw request body, exactly as received
            signature_header: Stripe-Signature header value

        Returns:
            Accepted, or Rejected with a reason mapping to an HTTP status
        """
        start = time.perf_counter()
        event_type = "unparsed"

        try:
            envelope = self._verify(raw_body, signature_header)
            event = parse_event(envelope)
        except WebhookError as e:
            outcome = Rejected(reason=e.reason, detail=str(e))
            self._track(event_type, outcome, start)
            return outcome
        except (EventEnvelopeError, ValidationError) as e:
            logger.warning("Malformed webhook event", extra={"error": str(e)})
            outcome = Rejected(reason=RejectReason.INVALID_PAYLOAD, detail="Malformed event")
            self._track(event_type, outcome, start)
            return outcome

        event_type = event.type
        logger.info(
            "Processing Stripe webhook event",
            extra={"event_type": event.type, "event_id": event.event_id},
        )

        try:
            outcome = await self._reconcile(event)
        except (StorageUnavailableError, sqlite3.Error) as e:
            logger.error(
                "Webhook event could not be applied, storage unavailable",
                extra={"event_type": event.type, "event_id": event.event_id, "error": str(e)},
            )
            outcome = Rejected(
                reason=RejectReason.STORAGE_UNAVAILABLE, detail="Storage temporarily unavailable"
            )

        self._track(event_type, outcome, start)
        return outcome

    def _verify(self, raw_body: bytes, signature_header: str | None) -> dict:
        """Check the Stripe signature, then decode the envelope."""
        if not self.config.webhook_secret:
            logger.error("Webhook received but STRIPE_WEBHOOK_SECRET is not configured")
            raise WebhookError(RejectReason.NOT_CONFIGURED, "Webhook secret not configured")

        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            raise WebhookError(RejectReason.INVALID_PAYLOAD, "Payload is not UTF-8")

        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature_header or "",
                self.config.webhook_secret,
                self.config.webhook_tolerance_seconds,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(
                "Webhook signature verification failed",
                extra={"error": str(e), "has_signature": bool(signature_header)},
            )
            raise WebhookError(RejectReason.INVALID_SIGNATURE, "Invalid signature")

        try:
            envelope = json.loads(payload)
        except ValueError:
            raise WebhookError(RejectReason.INVALID_PAYLOAD, "Invalid payload")

        if not isinstance(envelope, dict):
            raise WebhookError(RejectReason.INVALID_PAYLOAD, "Event must be a JSON object")
        return envelope

    async def _reconcile(self, event: WebhookEvent) -> Accepted:
        if isinstance(event, UnknownEvent):
            logger.info(
                "Unhandled webhook event type",
                extra={"event_type": event.type, "event_id": event.event_id},
            )
            return Accepted(event_id=event.event_id, event_type=event.type, ignored=True)

        if await self.db.is_event_applied(event.event_id):
            return self._duplicate(event)

        with self.db.transaction():
            # A concurrent delivery of the same event may have won the race
            if not await self.db.record_applied_event(event.event_id, event.type):
                return self._duplicate(event)
            result = await self._dispatch(event)

        logger.info(
            "Webhook event processed",
            extra={
                "event_type": event.type,
                "event_id": event.event_id,
                "applied": result.applied,
                "reason": result.reason,
            },
        )
        return Accepted(
            event_id=event.event_id,
            event_type=event.type,
            ignored=not result.applied,
            transition=result,
        )

    async def _dispatch(self, event: WebhookEvent) -> TransitionResult:
        handlers = {
            CheckoutSessionCompleted: self._handle_checkout_completed,
            SubscriptionUpdated: self._handle_subscription_updated,
            SubscriptionDeleted: self._handle_subscription_deleted,
            InvoicePaymentSucceeded: self._handle_payment_succeeded,
            InvoicePaymentFailed: self._handle_payment_failed,
        }
        return await handlers[type(event)](event)

    async def _handle_checkout_completed(self, event: CheckoutSessionCompleted) -> TransitionResult:
        if event.mode != "subscription":
            logger.warning(
                "Checkout session is not a subscription, ignoring",
                extra={"event_id": event.event_id, "mode": event.mode},
            )
            return TransitionResult(applied=False, reason="not_subscription_mode")

        return await self.state_machine.on_checkout_completed(
            customer_id=event.customer_id,
            subscription_id=event.subscription_id,
            account_id=event.account_id,
            plan_hint=event.plan_hint,
            price_id=event.price_id,
            event_at=event.created_at,
        )

    async def _handle_subscription_updated(self, event: SubscriptionUpdated) -> TransitionResult:
        plan_id = None
        if event.price_id or event.lookup_key:
            plan_id = self.catalog.resolve_plan_id(event.price_id, event.lookup_key)

        return await self.state_machine.on_subscription_updated(
            subscription_id=event.subscription_id,
            status=event.status,
            plan_id=plan_id,
            period_start=event.period_start,
            period_end=event.period_end,
            cancel_at_period_end=event.cancel_at_period_end,
            customer_id=event.customer_id,
            event_at=event.created_at,
        )

    async def _handle_subscription_deleted(self, event: SubscriptionDeleted) -> TransitionResult:
        return await self.state_machine.on_subscription_deleted(
            subscription_id=event.subscription_id,
            period_start=event.period_start,
            period_end=event.period_end,
            event_at=event.created_at,
        )

    async def _handle_payment_succeeded(self, event: InvoicePaymentSucceeded) -> TransitionResult:
        return await self.state_machine.on_invoice_payment_succeeded(
            event.subscription_id, event_at=event.created_at
        )

    async def _handle_payment_failed(self, event: InvoicePaymentFailed) -> TransitionResult:
        if event.attempt_count:
            logger.info(
                "Invoice payment attempt failed",
                extra={"subscription_id": event.subscription_id, "attempt": event.attempt_count},
            )
        return await self.state_machine.on_invoice_payment_failed(
            event.subscription_id, event_at=event.created_at
        )

    def _duplicate(self, event: WebhookEvent) -> Accepted:
        logger.info(
            "Duplicate webhook event ignored",
            extra={"event_type": event.type, "event_id": event.event_id},
        )
        return Accepted(event_id=event.event_id, event_type=event.type, duplicate=True)

    @staticmethod
    def _track(event_type: str, outcome: WebhookOutcome, start: float) -> None:
        if isinstance(outcome, Rejected):
            label = f"rejected_{outcome.reason.value}"
        elif outcome.duplicate:
            label = "duplicate"
        elif outcome.ignored:
            label = "ignored"
        else:
            label = "applied"
        track_webhook_event(event_type, label, time.perf_counter() - start)
