"""
Usage metering models: billing cycles, usage records and quota decisions.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.utils.timestamps import ms_to_iso, now_ms


class BillingCycle(BaseModel):
    """Half-open [start, end) window in epoch milliseconds."""

    model_config = ConfigDict(frozen=True)

    start: int
    end: int

    @model_validator(mode="after")
    def validate_bounds(self) -> "BillingCycle":
        if self.end <= self.start:
            raise ValueError(f"cycle end ({self.end}) must be greater than start ({self.start})")
        return self

    def contains(self, instant: int) -> bool:
        return self.start <= instant < self.end


class UsageRecord(BaseModel):
    """
    Immutable fact: pages consumed by one completed metered operation.

    The cycle window is copied at insert time and never recomputed.
    """

    model_config = ConfigDict(frozen=True)

    account_id: str
    source_ref: str = Field(..., min_length=1, max_length=255)
    amount: int = Field(..., gt=0)
    cycle_start: int
    cycle_end: int
    recorded_at: int = Field(default_factory=now_ms)


class UsageSnapshot(BaseModel):
    """Used/limit/remaining view for one account and one cycle."""

    account_id: str
    plan_id: str
    used: int = Field(..., ge=0)
    limit: int = Field(..., ge=0)
    remaining: int = Field(..., ge=0)
    cycle_start: int
    cycle_end: int

    @property
    def usage_percentage(self) -> float:
        if self.limit <= 0:
            return 100.0 if self.used else 0.0
        return round(self.used / self.limit * 100, 2)

    def to_response(self) -> dict:
        return {
            **self.model_dump(),
            "usage_percentage": self.usage_percentage,
            "cycle_start_iso": ms_to_iso(self.cycle_start),
            "cycle_end_iso": ms_to_iso(self.cycle_end),
        }


class AppendResult(BaseModel):
    """Outcome of a ledger append."""

    recorded: bool
    duplicate: bool = False
    over_limit: bool = False
    record: UsageRecord | None = None


class QuotaAllowed(BaseModel):
    allowed: Literal[True] = True
    usage: UsageSnapshot


class QuotaDenied(BaseModel):
    allowed: Literal[False] = False
    reason: str
    usage: UsageSnapshot | None = None


QuotaDecision = QuotaAllowed | QuotaDenied
