"""
Tests for Stripe-compatible webhook signing.
"""

import pytest
import stripe

from src.webhooks.signing import StripeWebhookSigner, build_event


def test_signature_header_format():
    signer = StripeWebhookSigner("whsec_test_secret")

    header = signer.sign_payload('{"id":"evt_1"}', timestamp=1700000000)

    timestamp, signature = header.split(",")
    assert timestamp == "t=1700000000"
    assert signature.startswith("v1=")
    assert len(signature) == len("v1=") + 64


def test_signature_verifies_with_stripe_library():
    signer = StripeWebhookSigner("whsec_test_secret")
    body = signer.encode(build_event("invoice.paid", {"id": "in_1"}))

    assert stripe.WebhookSignature.verify_header(
        body, signer.sign_payload(body), "whsec_test_secret", tolerance=300
    )


def test_signature_depends_on_secret():
    body = '{"id":"evt_1"}'
    one = StripeWebhookSigner("whsec_one").sign_payload(body, timestamp=1)
    two = StripeWebhookSigner("whsec_two").sign_payload(body, timestamp=1)

    assert one != two


def test_create_headers():
    headers = StripeWebhookSigner("whsec_test_secret").create_headers("{}")

    assert headers["Content-Type"] == "application/json"
    assert headers["Stripe-Signature"].startswith("t=")


def test_empty_secret_rejected():
    with pytest.raises(ValueError):
        StripeWebhookSigner("")


def test_build_event_envelope():
    event = build_event("customer.subscription.deleted", {"id": "sub_1"}, created=1700000000)

    assert event["id"].startswith("evt_")
    assert event["type"] == "customer.subscription.deleted"
    assert event["created"] == 1700000000
    assert event["data"] == {"object": {"id": "sub_1"}}
