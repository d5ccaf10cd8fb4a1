"""
Epoch-millisecond helpers.

Billing windows are stored and compared as integer epoch milliseconds so that
windows copied onto usage records compare exactly. Stripe reports seconds.
"""

import time
from datetime import UTC, datetime

SECOND_MS = 1000
DAY_MS = 24 * 60 * 60 * SECOND_MS


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def stripe_seconds_to_ms(value: int | float | None) -> int | None:
    """Convert a Stripe epoch-seconds field to epoch milliseconds."""
    if value is None:
        return None
    return int(value) * SECOND_MS


def ms_to_datetime(value: int) -> datetime:
    return datetime.fromtimestamp(value / SECOND_MS, UTC)


def ms_to_iso(value: int | None) -> str | None:
    if value is None:
        return None
    return ms_to_datetime(value).isoformat()
