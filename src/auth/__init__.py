"""
Authentication and authorization for the billing API.

Security:
- Gateway-forwarded account id for user requests
- Shared service key for service-to-service calls
"""

from src.auth.dependencies import (
    get_current_account,
    require_service_key,
)

__all__ = [
    "get_current_account",
    "require_service_key",
]
