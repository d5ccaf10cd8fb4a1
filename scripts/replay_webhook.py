#!/usr/bin/env python3
"""
Replay a Stripe event against a running billing service.

Reads a captured event (JSON file as exported from the Stripe dashboard or
`stripe events retrieve`), signs it with the configured webhook secret and
POSTs it to the webhook endpoint. Useful for reproducing reconciliation
issues locally without the Stripe CLI.

Usage:
    python scripts/replay_webhook.py EVENT_FILE [--url URL] [--secret SECRET]
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import httpx

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import get_settings
from src.webhooks.signing import StripeWebhookSigner

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:8000/api/v1/billing/webhook"


def replay(event_file: Path, url: str, secret: str, timeout: float) -> int:
    """
    Sign and deliver one event.

    Returns:
        int: HTTP status code returned by the service
    """
    event = json.loads(event_file.read_text(encoding="utf-8"))
    signer = StripeWebhookSigner(secret)
    body = signer.encode(event)

    logger.info(f"Replaying {event.get('type')} ({event.get('id')}) to {url}")

    response = httpx.post(url, content=body, headers=signer.create_headers(body), timeout=timeout)
    logger.info(f"Response {response.status_code}: {response.text}")
    return response.status_code


def main():
    parser = argparse.ArgumentParser(description="Replay a signed Stripe event")
    parser.add_argument("event_file", type=Path, help="Path to the event JSON")
    parser.add_argument("--url", default=DEFAULT_URL, help=f"Webhook URL (default: {DEFAULT_URL})")
    parser.add_argument(
        "--secret",
        default=None,
        help="Webhook signing secret (default: STRIPE_WEBHOOK_SECRET)",
    )
    parser.add_argument("--timeout", type=float, default=10.0)

    args = parser.parse_args()
    secret = args.secret or get_settings().stripe.webhook_secret
    if not secret:
        logger.error("❌ No webhook secret: pass --secret or set STRIPE_WEBHOOK_SECRET")
        sys.exit(1)

    try:
        status_code = replay(args.event_file, args.url, secret, args.timeout)
    except httpx.HTTPError as e:
        logger.error(f"❌ Delivery failed: {e}")
        sys.exit(1)

    sys.exit(0 if status_code < 300 else 1)


if __name__ == "__main__":
    main()
