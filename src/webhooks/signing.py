"""
Stripe-compatible webhook signing.

Produces Stripe-Signature headers (t=<timestamp>,v1=<hmac>) for locally
built or captured event payloads, so they can be replayed against the
webhook endpoint in development and tests.

Signature scheme:
- signed payload is "{timestamp}.{raw body}"
- HMAC-SHA256 keyed with the endpoint secret (whsec_...)
- hex digest under the v1 scheme
"""

import hashlib
import hmac
import json
import logging
import time
import uuid
from typing import Any

logger = logging.getLogger(__name__)


class StripeWebhookSigner:
    """
    Sign webhook payloads the way Stripe does.

    Usage:
        signer = StripeWebhookSigner("whsec_...")
        body = signer.encode(event)
        headers = signer.create_headers(body)
        httpx.post(url, content=body, headers=headers)
    """

    SIGNATURE_SCHEME = "v1"

    def __init__(self, secret: str):
        """
        Args:
            secret: Webhook endpoint signing secret

        Raises:
            ValueError: If the secret is empty
        """
        if not secret:
            raise ValueError("Webhook secret is required for signing")

        self.secret = secret.encode("utf-8")

    def compute_signature(self, payload: str, timestamp: int) -> str:
        signed_payload = f"{timestamp}.{payload}"
        return hmac.new(
            self.secret,
            signed_payload.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def sign_payload(self, payload: str, timestamp: int | None = None) -> str:
        """
        Build the Stripe-Signature header value.

        Args:
            payload: Raw JSON body exactly as it will be sent
            timestamp: Unix timestamp (None = use current time)

        Returns:
            str: "t=1700000000,v1=5257a869..."
        """
        if timestamp is None:
            timestamp = int(time.time())

        signature = self.compute_signature(payload, timestamp)
        return f"t={timestamp},{self.SIGNATURE_SCHEME}={signature}"

    def create_headers(self, payload: str, timestamp: int | None = None) -> dict[str, str]:
        return {
            "Stripe-Signature": self.sign_payload(payload, timestamp),
            "Content-Type": "application/json",
        }

    @staticmethod
    def encode(event: dict[str, Any]) -> str:
        """Serialize an event the same way for signing and sending."""
        return json.dumps(event, separators=(",", ":"))


def build_event(
    event_type: str,
    data_object: dict[str, Any],
    event_id: str | None = None,
    created: int | None = None,
    livemode: bool = False,
) -> dict[str, Any]:
    """
    Wrap a data object in a Stripe event envelope.

    Args:
        event_type: e.g. "customer.subscription.updated"
        data_object: Payload placed under data.object
        event_id: Event id (generated evt_... if omitted)
        created: Event time in Unix seconds (now if omitted)
        livemode: Stripe livemode flag

    Returns:
        dict: Event envelope
    """
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:24]}",
        "object": "event",
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "livemode": livemode,
        "api_version": "2024-06-20",
        "data": {"object": data_object},
    }
