"""Subscription routes - thin adapters over the lifecycle manager.

GET  /api/subscription/plans                 - active catalog plans (public)
POST /api/subscription/quote                 - price quote for a plan at a capacity (public)
GET  /api/subscription/me                    - subscription with derived trial/expiry fields
POST /api/subscription/login-hook            - post-login trial grant
POST /api/subscription/usage                 - record beds/branches put into use
POST /api/subscription/trial                 - activate the one-time free trial
POST /api/subscription/subscribe             - subscribe to a plan
POST /api/subscription/beds                  - bed capacity top-up
POST /api/subscription/branches              - branch capacity top-up
GET  /api/subscription/restrictions          - advisory capacity check
POST /api/subscription/cancel                - cancel
GET  /api/subscription/history               - subscription audit trail
POST /api/subscription/admin/{account_id}/extend  - superadmin: extend end date
POST /api/subscription/admin/expiry-sweep         - superadmin: run the expiry sweep now
"""
from fastapi import APIRouter, HTTPException, Query, Request, status
from typing import Optional
import logging

from errors import SubscriptionCoreError
from middleware import require_auth, require_superadmin, result_response
from models import (
    AddBedsRequest,
    AddBranchesRequest,
    CancelRequest,
    ExtendRequest,
    QuoteRequest,
    SubscribeRequest,
    UsageIncrementRequest,
)
from services.capacity_pricing import compute_plan_cost
from services.plan_catalog import plan_catalog
from services.subscription_lifecycle import subscription_lifecycle
from utils.audit import get_audit_logs_for_account

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/subscription", tags=["subscription"])


@router.get("/plans")
async def list_plans():
    plans = await plan_catalog.list_active_plans()
    return {"plans": [p.model_dump(mode="json") for p in plans]}


@router.post("/quote")
async def quote_plan(body: QuoteRequest):
    plan = await plan_catalog.get_plan(body.plan_id)
    if plan is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription plan not found")
    try:
        quote = compute_plan_cost(plan, body.bed_count, body.branch_count)
    except SubscriptionCoreError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"plan_id": plan.plan_id, "plan_name": plan.plan_name, **quote.to_dict()}


@router.get("/me")
async def get_my_subscription(request: Request):
    user = await require_auth(request)
    return result_response(await subscription_lifecycle.get_subscription(user["account_id"]))


@router.post("/trial")
async def activate_trial(request: Request):
    user = await require_auth(request)
    return result_response(await subscription_lifecycle.activate_free_trial(user["account_id"]))


@router.post("/login-hook")
async def login_hook(request: Request):
    """Called after a successful login: grants the one-time trial when nothing is live."""
    user = await require_auth(request)
    return result_response(await subscription_lifecycle.ensure_trial_on_login(user["account_id"]))


@router.post("/usage")
async def increment_usage(request: Request, body: UsageIncrementRequest):
    user = await require_auth(request)
    result = await subscription_lifecycle.increment_usage(user["account_id"], body.beds_delta, body.branches_delta)
    return result_response(result)


@router.post("/subscribe")
async def subscribe(request: Request, body: SubscribeRequest):
    user = await require_auth(request)
    result = await subscription_lifecycle.subscribe_user(
        user["account_id"],
        body.plan_id,
        body.billing_cycle,
        body.total_beds,
        body.total_branches,
        payment_status=body.payment_status,
        allow_upgrade=body.allow_upgrade,
        actor_id=user["account_id"],
    )
    return result_response(result)


@router.post("/beds")
async def add_beds(request: Request, body: AddBedsRequest):
    user = await require_auth(request)
    result = await subscription_lifecycle.add_beds(
        user["account_id"], body.additional_beds, body.new_max_beds, actor_id=user["account_id"]
    )
    return result_response(result)


@router.post("/branches")
async def add_branches(request: Request, body: AddBranchesRequest):
    user = await require_auth(request)
    result = await subscription_lifecycle.add_branches(
        user["account_id"], body.additional_branches, body.new_max_branches, actor_id=user["account_id"]
    )
    return result_response(result)


@router.get("/restrictions")
async def check_restrictions(
    request: Request,
    resource_type: str = Query(..., description="beds | branches | module"),
    count: int = Query(1, description="Units about to be added"),
    module_name: Optional[str] = Query(None),
):
    user = await require_auth(request)
    result = await subscription_lifecycle.check_capacity(user["account_id"], resource_type, count, module_name)
    return result_response(result)


@router.post("/cancel")
async def cancel(request: Request, body: CancelRequest):
    user = await require_auth(request)
    result = await subscription_lifecycle.cancel_subscription(
        user["account_id"], reason=body.reason, actor_id=user["account_id"]
    )
    return result_response(result)


@router.get("/history")
async def subscription_history(request: Request, limit: int = Query(50, ge=1, le=200)):
    user = await require_auth(request)
    logs = await get_audit_logs_for_account(user["account_id"], resource_type="subscription", limit=limit)
    return {"history": logs}


@router.post("/admin/{account_id}/extend")
async def admin_extend(request: Request, account_id: str, body: ExtendRequest):
    admin = await require_superadmin(request)
    result = await subscription_lifecycle.extend_subscription(account_id, body.days, actor_id=admin["account_id"])
    return result_response(result)


@router.post("/admin/expiry-sweep")
async def admin_run_expiry_sweep(request: Request):
    await require_superadmin(request)
    from job_runner import run_subscription_expiry_sweep
    return await run_subscription_expiry_sweep()
