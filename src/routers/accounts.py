"""
Account sync API endpoints.

The identity collaborator upserts accounts here on sign-in; the billing
core only ever reads them afterwards.

Security:
- Service-key endpoints (X-Service-Key)
- Audit logging for all mutations
"""

import logging
import sqlite3

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from src.auth import require_service_key
from src.billing.dependencies import get_plan_catalog
from src.billing.plan_catalog import PlanCatalog
from src.models.account import Account, AccountUpsert
from src.storage.database import BillingDatabase, get_billing_db
from src.utils.timestamps import ms_to_iso

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/accounts",
    tags=["Accounts"],
    dependencies=[Depends(require_service_key)],
)


class AccountResponse(BaseModel):
    """Account with its current effective plan."""

    account_id: str
    external_id: str
    email: str
    created_at: int
    created_at_iso: str
    effective_plan_id: str
    monthly_page_limit: int


async def _to_response(
    account: Account, db: BillingDatabase, catalog: PlanCatalog
) -> AccountResponse:
    subscription = await db.get_subscription(account.account_id)
    plan = catalog.get(subscription.effective_plan_id)
    return AccountResponse(
        account_id=account.account_id,
        external_id=account.external_id,
        email=account.email,
        created_at=account.created_at,
        created_at_iso=ms_to_iso(account.created_at),
        effective_plan_id=plan.plan_id,
        monthly_page_limit=plan.monthly_page_limit,
    )


@router.post("", response_model=AccountResponse)
async def upsert_account(
    account_data: AccountUpsert,
    db: BillingDatabase = Depends(get_billing_db),
    catalog: PlanCatalog = Depends(get_plan_catalog),
) -> AccountResponse:
    """
    Create or refresh an account.

    created_at is kept from the first sync.

    Raises:
        409: external_id already belongs to another account
    """
    try:
        account = await db.upsert_account(account_data.to_account())
    except sqlite3.IntegrityError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="External identity is already linked to another account",
        )

    logger.info("Account synced", extra={"account_id": account.account_id})
    return await _to_response(account, db, catalog)


@router.get("/{account_id}", response_model=AccountResponse)
async def get_account(
    account_id: str,
    db: BillingDatabase = Depends(get_billing_db),
    catalog: PlanCatalog = Depends(get_plan_catalog),
) -> AccountResponse:
    account = await db.get_account(account_id)

    if account is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Account '{account_id}' not found",
        )

    return await _to_response(account, db, catalog)
