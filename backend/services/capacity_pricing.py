"""Capacity Pricing Calculator.

Pure functions that turn a requested bed/branch total and a plan into a price.
No I/O and no hidden state; inputs are validated before use.

Pricing rules:
- Beds above plan.base_bed_count are charged at plan.top_up_price_per_bed.
- Branches above the first are charged at plan.cost_per_branch.
- Annual price is monthly x 12, discounted by plan.annual_discount percent only
  when the plan bills annually and a discount is configured.
- Missing numeric plan fields count as 0 (see models.Plan).
"""
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict

from errors import ValidationError
from models import BillingCycle, CustomPricing, Plan

BASE_BRANCH_COUNT = 1


@dataclass(frozen=True)
class TopUpQuote:
    top_up_units: int
    top_up_cost: float
    total_monthly_price: float
    total_annual_price: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PlanCostQuote:
    base_price: float
    requested_beds: int
    requested_branches: int
    extra_beds: int
    top_up_cost: float
    extra_branches: int
    branch_cost: float
    total_monthly_price: float
    total_annual_price: float
    billing_cycle: str
    discount: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _money(value: float) -> float:
    return round(float(value), 2)


def require_whole_number(value, label: str, minimum: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} must be a whole number", {"field": label})
    if value < minimum:
        qualifier = "greater than 0" if minimum == 1 else f"at least {minimum}"
        raise ValidationError(f"{label} must be {qualifier}", {"field": label, "value": value})
    return value


def require_positive_int(value, label: str) -> int:
    return require_whole_number(value, label, minimum=1)


def validate_additional_units(additional: int, label: str = "additional units") -> int:
    return require_positive_int(additional, label)


def annual_price(plan: Plan, monthly: float) -> float:
    yearly = monthly * 12
    if plan.billing_cycle == BillingCycle.ANNUAL and plan.annual_discount > 0:
        yearly = yearly * (1 - plan.annual_discount / 100)
    return _money(yearly)


def compute_bed_top_up(plan: Plan, current_total_beds: int) -> TopUpQuote:
    total = require_whole_number(current_total_beds, "total beds")
    top_up_beds = max(0, total - plan.base_bed_count)
    top_up_cost = top_up_beds * plan.top_up_price_per_bed
    monthly = plan.base_price + top_up_cost
    return TopUpQuote(
        top_up_units=top_up_beds,
        top_up_cost=_money(top_up_cost),
        total_monthly_price=_money(monthly),
        total_annual_price=annual_price(plan, monthly),
    )


def compute_branch_top_up(plan: Plan, current_total_branches: int) -> TopUpQuote:
    total = require_positive_int(current_total_branches, "total branches")
    if total > BASE_BRANCH_COUNT and not plan.allow_multiple_branches:
        raise ValidationError(
            "Your current plan does not allow multiple branches",
            {"plan_id": plan.plan_id, "requested_branches": total},
        )
    extra_branches = max(0, total - BASE_BRANCH_COUNT)
    branch_cost = extra_branches * plan.cost_per_branch
    monthly = plan.base_price + branch_cost
    return TopUpQuote(
        top_up_units=extra_branches,
        top_up_cost=_money(branch_cost),
        total_monthly_price=_money(monthly),
        total_annual_price=annual_price(plan, monthly),
    )


def build_custom_pricing(plan: Plan, total_beds: int, total_branches: int, now: datetime) -> CustomPricing:
    """Snapshot combining bed and branch top-ups into one monthly/annual price."""
    beds = compute_bed_top_up(plan, total_beds)
    branches = compute_branch_top_up(plan, total_branches)
    monthly = plan.base_price + beds.top_up_cost + branches.top_up_cost
    return CustomPricing(
        max_beds_allowed=total_beds,
        top_up_beds=beds.top_up_units,
        max_branches_allowed=total_branches,
        extra_branches=branches.top_up_units,
        total_monthly_price=_money(monthly),
        total_annual_price=annual_price(plan, monthly),
        updated_at=now,
    )


def compute_plan_cost(plan: Plan, bed_count: int, branch_count: int = BASE_BRANCH_COUNT) -> PlanCostQuote:
    """Full price quote for a plan at the requested capacity."""
    require_positive_int(bed_count, "bed count")
    require_positive_int(branch_count, "branch count")
    if bed_count < plan.base_bed_count:
        raise ValidationError(f"Bed count cannot be less than base bed count ({plan.base_bed_count})")
    if branch_count > BASE_BRANCH_COUNT and not plan.allow_multiple_branches:
        raise ValidationError("This plan does not allow multiple branches")
    if plan.allow_multiple_branches and plan.branch_count is not None and branch_count > plan.branch_count:
        raise ValidationError(f"Branch count exceeds maximum allowed ({plan.branch_count})")

    beds = compute_bed_top_up(plan, bed_count)
    branches = compute_branch_top_up(plan, branch_count)
    monthly = plan.base_price + beds.top_up_cost + branches.top_up_cost
    yearly = annual_price(plan, monthly)
    is_annual = plan.billing_cycle == BillingCycle.ANNUAL
    return PlanCostQuote(
        base_price=_money(plan.base_price),
        requested_beds=bed_count,
        requested_branches=branch_count,
        extra_beds=beds.top_up_units,
        top_up_cost=beds.top_up_cost,
        extra_branches=branches.top_up_units,
        branch_cost=branches.top_up_cost,
        # Annual plans report the discounted monthly equivalent
        total_monthly_price=_money(yearly / 12) if is_annual else _money(monthly),
        total_annual_price=yearly,
        billing_cycle=plan.billing_cycle.value,
        discount=plan.annual_discount if is_annual else 0,
    )
