"""Spend caps checked before each LLM call."""

from typing import Optional

from pydantic import BaseModel

from distill.llm.errors import BudgetExceededError


class BudgetPolicy(BaseModel):
    """Optional USD caps; None means unlimited."""

    max_usd_per_run: Optional[float] = None
    max_usd_per_day: Optional[float] = None


def assert_within_budget(
    next_cost_usd: float,
    spent_usd_run_so_far: float,
    spent_usd_day_so_far: float,
    policy: BudgetPolicy,
) -> None:
    """
    Raise if the next call would exceed either spend cap.

    The per-run cap is checked against run spend and the per-day cap against
    day spend; each is evaluated independently on every call.

    Raises:
        BudgetExceededError: With limit_type 'per_run' or 'per_day'
    """
    if policy.max_usd_per_run is not None:
        if spent_usd_run_so_far + next_cost_usd > policy.max_usd_per_run:
            raise BudgetExceededError(
                next_cost_usd, spent_usd_run_so_far, policy.max_usd_per_run, "per_run"
            )

    if policy.max_usd_per_day is not None:
        if spent_usd_day_so_far + next_cost_usd > policy.max_usd_per_day:
            raise BudgetExceededError(
                next_cost_usd, spent_usd_day_so_far, policy.max_usd_per_day, "per_day"
            )
