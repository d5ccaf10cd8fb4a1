"""
Subscription models.

An account has at most one subscription row. Absence of a row is modelled
explicitly as NoSubscription so callers always handle the implicit free tier.
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.models.plan import FREE_PLAN_ID
from src.utils.timestamps import now_ms


class SubscriptionStatus(str, Enum):
    """Processor-reported subscription status."""

    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    TRIALING = "trialing"
    INCOMPLETE = "incomplete"

    @classmethod
    def from_processor(cls, value: str | None) -> "SubscriptionStatus":
        """
        Map a Stripe status string onto the local status set.

        Stripe also reports incomplete_expired, unpaid and paused; those
        collapse onto the closest local state.
        """
        aliases = {
            "incomplete_expired": cls.CANCELED,
            "unpaid": cls.PAST_DUE,
            "paused": cls.PAST_DUE,
        }
        if value is None:
            return cls.INCOMPLETE
        if value in aliases:
            return aliases[value]
        try:
            return cls(value)
        except ValueError:
            return cls.INCOMPLETE


# Statuses whose stored plan governs the quota
ENTITLED_STATUSES = frozenset(
    {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING, SubscriptionStatus.PAST_DUE}
)


class NoSubscription(BaseModel):
    """No subscription row: implicit free tier, no processor linkage."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["none"] = "none"
    account_id: str

    @property
    def effective_plan_id(self) -> str:
        return FREE_PLAN_ID


class SubscriptionRecord(BaseModel):
    """Persisted subscription row."""

    kind: Literal["record"] = "record"

    account_id: str
    external_customer_id: str
    external_subscription_id: str | None = None
    status: SubscriptionStatus = SubscriptionStatus.INCOMPLETE
    plan_id: str = FREE_PLAN_ID

    # Processor-reported period (epoch ms), absent until the processor reports it
    current_period_start: int | None = None
    current_period_end: int | None = None
    cancel_at_period_end: bool = False

    # Event time of the last applied webhook (epoch ms), used to drop stale deliveries
    last_applied_event_at: int | None = None

    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    @model_validator(mode="after")
    def validate_period(self) -> "SubscriptionRecord":
        if self.current_period_start is not None and self.current_period_end is not None:
            if self.current_period_end <= self.current_period_start:
                raise ValueError(
                    "current_period_end must be greater than current_period_start "
                    f"({self.current_period_end} <= {self.current_period_start})"
                )
        return self

    @property
    def has_period(self) -> bool:
        return self.current_period_start is not None and self.current_period_end is not None

    def period_contains(self, instant: int) -> bool:
        """Half-open [start, end) membership test."""
        if not self.has_period:
            return False
        return self.current_period_start <= instant < self.current_period_end

    @property
    def effective_plan_id(self) -> str:
        """Plan that governs the quota right now."""
        if self.status in ENTITLED_STATUSES:
            return self.plan_id
        return FREE_PLAN_ID


Subscription = NoSubscription | SubscriptionRecord
