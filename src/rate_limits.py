"""
Rate limiting for the billing API.

Checkout and portal endpoints call Stripe on every request, so they are
limited per account. Uses slowapi with in-memory storage.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from src.config import get_settings


def get_account_id_for_rate_limit(request: Request) -> str:
    """
    Extract account_id for rate limiting.

    Falls back to IP address if not authenticated.
    """
    account = getattr(request.state, "account", None)
    if account is not None:
        return account.account_id
    return get_remote_address(request)


def checkout_rate_limit() -> str:
    """Limit applied to checkout and portal session creation."""
    return get_settings().service.checkout_rate_limit


limiter = Limiter(key_func=get_account_id_for_rate_limit)
