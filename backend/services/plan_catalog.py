"""Plan Catalog - read-only access to subscription plan definitions.

Plans live in the subscription_plans collection and are maintained outside
the subscription core. DEFAULT_PLANS seeds a fresh database at startup
(insert-if-missing; edited plans are never overwritten).
"""
import logging
import os
from typing import List, Optional

from database import database
from models import Plan, PlanStatus

logger = logging.getLogger(__name__)

TRIAL_PLAN_NAME = os.getenv("TRIAL_PLAN_NAME", "Free Trial Plan")

_STANDARD_MODULES = [
    {"module_name": "tenant_management", "enabled": True, "limit": None},
    {"module_name": "room_management", "enabled": True, "limit": None},
    {"module_name": "payment_tracking", "enabled": True, "limit": None},
    {"module_name": "ticket_management", "enabled": True, "limit": None},
]

DEFAULT_PLANS = [
    {
        "plan_id": "plan_free_trial",
        "plan_name": TRIAL_PLAN_NAME,
        "description": "Full access for a limited period, once per account",
        "billing_cycle": "trial",
        "base_price": 0,
        "annual_discount": 0,
        "base_bed_count": 30,
        "top_up_price_per_bed": 0,
        "max_beds_allowed": 30,
        "allow_multiple_branches": True,
        "branch_count": 2,
        "cost_per_branch": 0,
        "trial_period_days": 14,
        "modules": _STANDARD_MODULES + [{"module_name": "multi_branch", "enabled": True, "limit": 2}],
        "features": ["basic_reports", "email_support"],
        "status": "active",
    },
    {
        "plan_id": "plan_basic_monthly",
        "plan_name": "Basic Monthly",
        "billing_cycle": "monthly",
        "base_price": 999,
        "annual_discount": 0,
        "base_bed_count": 20,
        "top_up_price_per_bed": 50,
        "max_beds_allowed": None,
        "allow_multiple_branches": False,
        "branch_count": 1,
        "cost_per_branch": 0,
        "modules": _STANDARD_MODULES,
        "features": ["basic_reports", "email_support"],
        "status": "active",
    },
    {
        "plan_id": "plan_pro_monthly",
        "plan_name": "Pro Monthly",
        "billing_cycle": "monthly",
        "base_price": 2499,
        "annual_discount": 0,
        "base_bed_count": 50,
        "top_up_price_per_bed": 40,
        "max_beds_allowed": None,
        "allow_multiple_branches": True,
        "branch_count": 5,
        "cost_per_branch": 500,
        "modules": _STANDARD_MODULES + [
            {"module_name": "multi_branch", "enabled": True, "limit": 5},
            {"module_name": "advanced_analytics", "enabled": True, "limit": None},
        ],
        "features": ["advanced_reports", "priority_support"],
        "status": "active",
    },
    {
        "plan_id": "plan_pro_annual",
        "plan_name": "Pro Annual",
        "billing_cycle": "annual",
        "base_price": 2499,
        "annual_discount": 15,
        "base_bed_count": 50,
        "top_up_price_per_bed": 40,
        "max_beds_allowed": None,
        "allow_multiple_branches": True,
        "branch_count": 5,
        "cost_per_branch": 500,
        "modules": _STANDARD_MODULES + [
            {"module_name": "multi_branch", "enabled": True, "limit": 5},
            {"module_name": "advanced_analytics", "enabled": True, "limit": None},
        ],
        "features": ["advanced_reports", "priority_support"],
        "status": "active",
    },
]


class PlanCatalog:
    """Lookup-by-id and trial plan resolution over subscription_plans."""

    def __init__(self, db=None):
        self._db = db

    def _get_db(self):
        return self._db if self._db is not None else database.get_db()

    async def get_plan(self, plan_id: Optional[str]) -> Optional[Plan]:
        if not plan_id:
            return None
        doc = await self._get_db().subscription_plans.find_one({"plan_id": plan_id}, {"_id": 0})
        return Plan(**doc) if doc else None

    async def get_trial_plan(self) -> Optional[Plan]:
        doc = await self._get_db().subscription_plans.find_one(
            {"plan_name": TRIAL_PLAN_NAME, "status": PlanStatus.ACTIVE.value},
            {"_id": 0},
        )
        if not doc:
            logger.warning("Trial plan %r not found in catalog", TRIAL_PLAN_NAME)
            return None
        return Plan(**doc)

    async def list_active_plans(self) -> List[Plan]:
        cursor = self._get_db().subscription_plans.find({"status": PlanStatus.ACTIVE.value}, {"_id": 0})
        docs = await cursor.to_list(length=200)
        return [Plan(**d) for d in docs]


plan_catalog = PlanCatalog()
