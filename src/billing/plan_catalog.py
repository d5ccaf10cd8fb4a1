"""
Plan catalog.

Immutable mapping from plan id to monthly page limit and Stripe price ids.
Built once at startup and passed to every billing component; lookups never
raise so an unmapped price from a webhook degrades to the free tier.
"""

import logging
from collections.abc import Iterable

from src.config import Settings
from src.models.plan import FREE_PLAN_ID, Plan

logger = logging.getLogger(__name__)


class PlanCatalog:
    """Read-only plan table with a guaranteed free tier."""

    def __init__(self, plans: Iterable[Plan]):
        """
        Args:
            plans: Plan definitions; must include the free plan

        Raises:
            ValueError: If the free plan is missing or a plan id repeats
        """
        by_id: dict[str, Plan] = {}
        for plan in plans:
            if plan.plan_id in by_id:
                raise ValueError(f"Duplicate plan id: {plan.plan_id}")
            by_id[plan.plan_id] = plan

        if FREE_PLAN_ID not in by_id:
            raise ValueError(f"Plan catalog must define the '{FREE_PLAN_ID}' plan")

        self._plans = by_id

    @classmethod
    def from_settings(cls, settings: Settings) -> "PlanCatalog":
        """Build the default free/starter/pro catalog from configuration."""
        billing = settings.billing
        stripe_config = settings.stripe

        return cls(
            [
                Plan(
                    plan_id=FREE_PLAN_ID,
                    name="Free",
                    description="Try document extraction at no cost",
                    monthly_page_limit=billing.free_page_limit,
                    price_cents=0,
                ),
                Plan(
                    plan_id="starter",
                    name="Starter",
                    description="For individuals with regular extraction needs",
                    monthly_page_limit=billing.starter_page_limit,
                    price_cents=billing.starter_price_cents,
                    stripe_price_ids=_price_ids(stripe_config.price_id_starter),
                ),
                Plan(
                    plan_id="pro",
                    name="Pro",
                    description="For teams processing documents every day",
                    monthly_page_limit=billing.pro_page_limit,
                    price_cents=billing.pro_price_cents,
                    stripe_price_ids=_price_ids(stripe_config.price_id_pro),
                    popular=True,
                ),
            ]
        )

    @property
    def free(self) -> Plan:
        return self._plans[FREE_PLAN_ID]

    def plans(self) -> list[Plan]:
        """All plans, cheapest first."""
        return sorted(self._plans.values(), key=lambda p: (p.price_cents, p.monthly_page_limit))

    def has(self, plan_id: str | None) -> bool:
        return plan_id is not None and plan_id in self._plans

    def get(self, plan_id: str | None) -> Plan:
        """Plan for an id; unknown ids resolve to the free plan."""
        plan = self._plans.get(plan_id) if plan_id else None
        if plan is None:
            logger.warning(
                "Unknown plan id, falling back to free tier",
                extra={"plan_id": plan_id},
            )
            return self.free
        return plan

    def limit_for(self, plan_id: str | None) -> int:
        """Monthly page limit for a plan id (free limit if unknown)."""
        return self.get(plan_id).monthly_page_limit

    def resolve_plan_id(self, price_id: str | None, lookup_key: str | None = None) -> str:
        """
        Map a Stripe price back to a plan id.

        Scans every plan's price ids, then accepts a price lookup_key that
        names a plan directly. Anything else resolves to free.

        Args:
            price_id: Stripe price id from a line item or subscription item
            lookup_key: Optional Stripe price lookup_key

        Returns:
            str: A plan id present in this catalog
        """
        if price_id:
            for plan in self._plans.values():
                if price_id in plan.stripe_price_ids:
                    return plan.plan_id

        if lookup_key and lookup_key in self._plans:
            return lookup_key

        if price_id or lookup_key:
            logger.warning(
                "Unmapped Stripe price, falling back to free tier",
                extra={"price_id": price_id, "lookup_key": lookup_key},
            )
        return FREE_PLAN_ID

    def price_id_for(self, plan_id: str) -> str | None:
        """Primary Stripe price id used when starting checkout for a plan."""
        plan = self._plans.get(plan_id)
        if plan is None or not plan.stripe_price_ids:
            return None
        return plan.stripe_price_ids[0]


def _price_ids(configured: str) -> tuple[str, ...]:
    """Comma-separated price ids (current price first, legacy prices after)."""
    return tuple(p.strip() for p in configured.split(",") if p.strip())
