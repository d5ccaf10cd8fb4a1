"""
Subscription plan model.
"""

from pydantic import BaseModel, ConfigDict, Field

FREE_PLAN_ID = "free"


class Plan(BaseModel):
    """A named subscription tier with a monthly page limit. Immutable."""

    model_config = ConfigDict(frozen=True)

    plan_id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    monthly_page_limit: int = Field(..., ge=0)
    price_cents: int = Field(default=0, ge=0)
    interval: str = "month"
    stripe_price_ids: tuple[str, ...] = ()
    popular: bool = False

    @property
    def is_paid(self) -> bool:
        return self.plan_id != FREE_PLAN_ID and self.price_cents > 0

    @property
    def features(self) -> list[str]:
        return [f"{self.monthly_page_limit} pages every {self.interval}"]
