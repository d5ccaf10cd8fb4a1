"""
Quota API endpoints for the document-processing pipeline.

Flow:
1. POST /api/v1/quota/check before a metered operation starts
2. POST /api/v1/quota/usage once it has produced billable output

Denials are HTTP 200 with allowed=false and the exact numbers.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from src.auth import require_service_key
from src.billing.dependencies import get_quota_enforcer
from src.billing.quota import AccountNotFoundError, QuotaEnforcer
from src.models.usage import QuotaAllowed

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/quota",
    tags=["Quota"],
    dependencies=[Depends(require_service_key)],
)


class QuotaCheckRequest(BaseModel):
    account_id: str = Field(..., min_length=1)
    required_pages: int = Field(..., ge=1)


class UsageView(BaseModel):
    plan_id: str
    used: int
    limit: int
    remaining: int
    cycle_start: int
    cycle_end: int


class QuotaCheckResponse(BaseModel):
    """Structured allow/deny result."""

    allowed: bool
    reason: Optional[str] = None
    usage: Optional[UsageView] = None


class RecordUsageRequest(BaseModel):
    account_id: str = Field(..., min_length=1)
    pages: int = Field(..., ge=1)
    source_ref: str = Field(..., min_length=1, max_length=255, description="e.g. document id")


class RecordUsageResponse(BaseModel):
    recorded: bool
    duplicate: bool
    over_limit: bool
    usage: UsageView


@router.post("/check", response_model=QuotaCheckResponse)
async def check_quota(
    request: QuotaCheckRequest,
    enforcer: QuotaEnforcer = Depends(get_quota_enforcer),
) -> QuotaCheckResponse:
    """Can this account process required_pages now?"""
    decision = await enforcer.check_and_reserve(request.account_id, request.required_pages)

    usage = UsageView(**decision.usage.model_dump()) if decision.usage else None
    if isinstance(decision, QuotaAllowed):
        return QuotaCheckResponse(allowed=True, usage=usage)
    return QuotaCheckResponse(allowed=False, reason=decision.reason, usage=usage)


@router.post("/usage", response_model=RecordUsageResponse)
async def record_usage(
    request: RecordUsageRequest,
    enforcer: QuotaEnforcer = Depends(get_quota_enforcer),
) -> RecordUsageResponse:
    """
    Record pages for a completed operation (idempotent per source_ref).

    Raises:
        404: Unknown account
    """
    try:
        result = await enforcer.record_usage(
            request.account_id, request.pages, request.source_ref
        )
        snapshot = await enforcer.usage_for(request.account_id)
    except AccountNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Account not found",
        )

    return RecordUsageResponse(
        recorded=result.recorded,
        duplicate=result.duplicate,
        over_limit=result.over_limit,
        usage=UsageView(**snapshot.model_dump()),
    )
