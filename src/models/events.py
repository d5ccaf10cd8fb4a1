"""
Stripe webhook events as a tagged union keyed by event type.

Each known type gets its own payload shape extracted from data.object.
Anything else becomes UnknownEvent, which the reconciler accepts and ignores.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

from src.utils.timestamps import stripe_seconds_to_ms


class EventEnvelopeError(ValueError):
    """Raised when a payload lacks the fields every Stripe event carries."""


class BaseEvent(BaseModel):
    event_id: str = Field(..., min_length=1)
    created_at: int | None = Field(default=None, description="Event time in epoch ms")
    livemode: bool = False


class CheckoutSessionCompleted(BaseEvent):
    type: Literal["checkout.session.completed"] = "checkout.session.completed"
    session_id: str | None = None
    mode: str | None = None
    payment_status: str | None = None
    customer_id: str | None = None
    subscription_id: str | None = None
    account_id: str | None = None
    plan_hint: str | None = None
    price_id: str | None = None


class SubscriptionUpdated(BaseEvent):
    type: Literal["customer.subscription.updated", "customer.subscription.created"] = (
        "customer.subscription.updated"
    )
    subscription_id: str
    customer_id: str | None = None
    status: str | None = None
    price_id: str | None = None
    lookup_key: str | None = None
    period_start: int | None = None
    period_end: int | None = None
    cancel_at_period_end: bool = False


class SubscriptionDeleted(BaseEvent):
    type: Literal["customer.subscription.deleted"] = "customer.subscription.deleted"
    subscription_id: str
    customer_id: str | None = None
    period_start: int | None = None
    period_end: int | None = None


class InvoicePaymentSucceeded(BaseEvent):
    type: Literal["invoice.payment_succeeded", "invoice.paid"] = "invoice.payment_succeeded"
    invoice_id: str | None = None
    subscription_id: str | None = None
    customer_id: str | None = None


class InvoicePaymentFailed(BaseEvent):
    type: Literal["invoice.payment_failed"] = "invoice.payment_failed"
    invoice_id: str | None = None
    subscription_id: str | None = None
    customer_id: str | None = None
    attempt_count: int | None = None


class UnknownEvent(BaseEvent):
    type: str
    raw: dict[str, Any] = Field(default_factory=dict)


WebhookEvent = (
    CheckoutSessionCompleted
    | SubscriptionUpdated
    | SubscriptionDeleted
    | InvoicePaymentSucceeded
    | InvoicePaymentFailed
    | UnknownEvent
)


def _id_of(value: Any) -> str | None:
    """Stripe references are either an id string or an expanded object."""
    if value is None:
        return None
    if isinstance(value, dict):
        return value.get("id")
    return str(value)


def _first_item(obj: dict) -> dict:
    items = (obj.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _epoch_ms(value: Any) -> int | None:
    try:
        return stripe_seconds_to_ms(value)
    except (TypeError, ValueError) as e:
        raise EventEnvelopeError(f"Invalid timestamp: {value!r}") from e


def _subscription_period(obj: dict) -> tuple[int | None, int | None]:
    """
    Period bounds in epoch ms.

    Newer API versions report the period on subscription items instead of the
    subscription itself; accept either.
    """
    start = obj.get("current_period_start")
    end = obj.get("current_period_end")
    if start is None or end is None:
        item = _first_item(obj)
        start = item.get("current_period_start", start)
        end = item.get("current_period_end", end)
    return _epoch_ms(start), _epoch_ms(end)


def _invoice_subscription_id(obj: dict) -> str | None:
    subscription_id = _id_of(obj.get("subscription"))
    if subscription_id:
        return subscription_id
    details = ((obj.get("parent") or {}).get("subscription_details")) or {}
    return _id_of(details.get("subscription"))


def _checkout_price_id(obj: dict) -> str | None:
    line_items = (obj.get("line_items") or {}).get("data") or []
    if not line_items:
        return None
    return _id_of(line_items[0].get("price"))


def parse_event(envelope: dict[str, Any]) -> WebhookEvent:
    """
    Parse a verified Stripe event envelope.

    Args:
        envelope: Decoded JSON body of the webhook delivery

    Returns:
        One concrete event model, or UnknownEvent for unhandled types

    Raises:
        EventEnvelopeError: If id, type or data.object is missing, or a
            timestamp field is not numeric
    """
    event_id = envelope.get("id")
    event_type = envelope.get("type")
    data = envelope.get("data")
    if not event_id or not event_type or not isinstance(data, dict):
        raise EventEnvelopeError("Event envelope requires id, type and data")

    obj = data.get("object")
    if not isinstance(obj, dict):
        raise EventEnvelopeError("Event envelope requires data.object")

    common = {
        "event_id": event_id,
        "created_at": _epoch_ms(envelope.get("created")),
        "livemode": bool(envelope.get("livemode", False)),
    }

    if event_type == "checkout.session.completed":
        metadata = obj.get("metadata") or {}
        return CheckoutSessionCompleted(
            **common,
            session_id=obj.get("id"),
            mode=obj.get("mode"),
            payment_status=obj.get("payment_status"),
            customer_id=_id_of(obj.get("customer")),
            subscription_id=_id_of(obj.get("subscription")),
            account_id=metadata.get("account_id") or obj.get("client_reference_id"),
            plan_hint=metadata.get("plan_id"),
            price_id=_checkout_price_id(obj),
        )

    if event_type in ("customer.subscription.updated", "customer.subscription.created"):
        price = _first_item(obj).get("price") or {}
        period_start, period_end = _subscription_period(obj)
        return SubscriptionUpdated(
            **common,
            type=event_type,
            subscription_id=obj.get("id"),
            customer_id=_id_of(obj.get("customer")),
            status=obj.get("status"),
            price_id=price.get("id"),
            lookup_key=price.get("lookup_key"),
            period_start=period_start,
            period_end=period_end,
            cancel_at_period_end=bool(obj.get("cancel_at_period_end", False)),
        )

    if event_type == "customer.subscription.deleted":
        period_start, period_end = _subscription_period(obj)
        return SubscriptionDeleted(
            **common,
            subscription_id=obj.get("id"),
            customer_id=_id_of(obj.get("customer")),
            period_start=period_start,
            period_end=period_end,
        )

    if event_type in ("invoice.payment_succeeded", "invoice.paid"):
        return InvoicePaymentSucceeded(
            **common,
            type=event_type,
            invoice_id=obj.get("id"),
            subscription_id=_invoice_subscription_id(obj),
            customer_id=_id_of(obj.get("customer")),
        )

    if event_type == "invoice.payment_failed":
        return InvoicePaymentFailed(
            **common,
            invoice_id=obj.get("id"),
            subscription_id=_invoice_subscription_id(obj),
            customer_id=_id_of(obj.get("customer")),
            attempt_count=obj.get("attempt_count"),
        )

    return UnknownEvent(**common, type=event_type, raw=obj)
