"""
PageMeter - Subscription billing and page quotas for document extraction.

Keeps a local, authoritative view of each account's Stripe subscription and
meters the pages every document-processing run consumes against the plan's
monthly limit.

Key Features:
    - Stripe webhook reconciliation (signed, de-duplicated, ordered)
    - Hosted Checkout and billing portal sessions
    - Per-cycle page ledger with idempotent usage recording
    - Quota checks for the document pipeline
    - Free tier on a rolling cycle anchored at sign-up

Example:
    >>> from src import get_settings
    >>> settings = get_settings()
    >>> print(settings.billing.pro_page_limit)
"""

from src.config import get_settings

__all__ = ["get_settings"]
