"""
FastAPI dependencies for authentication and authorization.

Two callers reach the billing service:
- The identity gateway forwards user requests with the authenticated
  account id in X-Account-ID (sessions are handled upstream).
- Internal services (document pipeline, identity sync) present the shared
  service key in X-Service-Key.

Security:
- Service key compared in constant time
- Account id taken only from the gateway header, never from request bodies
- Missing service key configuration blocks service endpoints entirely
"""

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from src.config import Settings, get_settings
from src.models.account import Account
from src.storage.database import BillingDatabase, get_billing_db

logger = logging.getLogger(__name__)


async def require_service_key(
    x_service_key: Optional[str] = Header(None, alias="X-Service-Key"),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Validate the shared service key.

    Raises:
        HTTPException 503: Service key not configured
        HTTPException 401: Missing or wrong key
    """
    expected = settings.billing.service_api_key
    if not expected:
        logger.error("Service endpoint called but BILLING_SERVICE_API_KEY is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service authentication not configured",
        )

    if not x_service_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication. Provide the service key via X-Service-Key header.",
        )

    if not hmac.compare_digest(x_service_key.encode(), expected.encode()):
        logger.warning("Service key validation failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid service key",
        )


async def get_current_account(
    request: Request,
    x_account_id: Optional[str] = Header(None, alias="X-Account-ID"),
    db: BillingDatabase = Depends(get_billing_db),
) -> Account:
    """
    Resolve the account forwarded by the identity gateway.

    Args:
        request: FastAPI request (account attached to request.state)
        x_account_id: Authenticated account id set by the gateway
        db: Billing database

    Returns:
        Account: Authenticated account

    Raises:
        HTTPException 401: Header missing
        HTTPException 404: Account not synced yet
    """
    if not x_account_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    account = await db.get_account(x_account_id)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Account not found",
        )

    request.state.account = account
    return account

