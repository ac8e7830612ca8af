"""Subscription Lifecycle Manager.

Sole mutator of the subscription embedded in each admin account.

State machine:
    free -> trial              activate_free_trial (once per account)
    free|trial -> active       subscribe_user (active -> active only with allow_upgrade)
    active -> active           add_beds / add_branches (capacity top-up)
    active|trial -> expired    expire_if_lapsed (reads treat a lapsed end_date as expired already)
    any -> cancelled           cancel_subscription, terminal until subscribe_user

Every transition runs under the account's lock and is written with a guard
filter on the state it was computed from, so a concurrent writer in another
process turns the write into a no-op instead of clobbering it.
"""
import logging
import math
import os
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Union

from errors import ConflictError, NotFoundError, ServiceResult, TransientStoreError, ValidationError, service_boundary
from models import (
    AuditAction,
    BillingCycle,
    LIVE_SUBSCRIPTION_STATUSES,
    PaymentRecord,
    PaymentStatus,
    Plan,
    PlanStatus,
    ResourceType,
    Subscription,
    SubscriptionStatus,
    to_document,
)
from services.account_store import account_store
from services.capacity_pricing import (
    BASE_BRANCH_COUNT,
    build_custom_pricing,
    compute_bed_top_up,
    compute_branch_top_up,
    require_positive_int,
    validate_additional_units,
)
from services.clock import add_months, add_years, as_utc, system_clock
from services.plan_catalog import plan_catalog
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

DEFAULT_TRIAL_PERIOD_DAYS = int(os.getenv("TRIAL_PERIOD_DAYS", "7"))
EXPIRING_SOON_DAYS = 2
PAID_BILLING_CYCLES = (BillingCycle.MONTHLY, BillingCycle.ANNUAL)


def _coerce(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"Invalid {label} {value!r}; expected one of: {allowed}")


def is_live(subscription: Subscription, now: datetime) -> bool:
    end_date = as_utc(subscription.end_date)
    return (
        subscription.status.value in LIVE_SUBSCRIPTION_STATUSES
        and end_date is not None
        and end_date > now
    )


def effective_status(subscription: Subscription, now: datetime) -> SubscriptionStatus:
    """Status as it must be treated for authorization, before any sweep has run."""
    if subscription.status.value in LIVE_SUBSCRIPTION_STATUSES:
        end_date = as_utc(subscription.end_date)
        if end_date is not None and end_date < now:
            return SubscriptionStatus.EXPIRED
    return subscription.status


def _days_until(moment: Optional[datetime], now: datetime) -> int:
    if moment is None:
        return 0
    return max(0, math.ceil((as_utc(moment) - now).total_seconds() / 86400))


def plan_bed_ceiling(plan: Plan) -> int:
    return plan.max_beds_allowed if plan.max_beds_allowed is not None else plan.base_bed_count


def plan_branch_ceiling(plan: Plan) -> int:
    return plan.branch_count if plan.branch_count is not None else BASE_BRANCH_COUNT


def bed_ceiling(subscription: Subscription, plan: Plan) -> int:
    """custom_pricing.max_beds_allowed, else plan.max_beds_allowed, else plan.base_bed_count."""
    if subscription.custom_pricing is not None:
        return subscription.custom_pricing.max_beds_allowed
    return plan_bed_ceiling(plan)


def branch_ceiling(subscription: Subscription, plan: Plan) -> int:
    if subscription.custom_pricing is not None:
        return subscription.custom_pricing.max_branches_allowed
    return plan_branch_ceiling(plan)


def build_subscription_view(subscription: Subscription, plan: Optional[Plan], now: datetime) -> Dict[str, Any]:
    """Subscription snapshot plus the derived, never-stored fields."""
    view = subscription.model_dump(mode="json")
    trial_end = as_utc(subscription.trial_end_date)
    trial_days_remaining = _days_until(trial_end, now)
    view.update({
        "effective_status": effective_status(subscription, now).value,
        "is_trial_active": subscription.status == SubscriptionStatus.TRIAL and trial_end is not None and trial_end > now,
        "trial_days_remaining": trial_days_remaining,
        "is_expiring_soon": trial_end is not None and trial_days_remaining <= EXPIRING_SOON_DAYS,
        "days_remaining": _days_until(subscription.end_date, now),
        "plan_name": plan.plan_name if plan else None,
    })
    return view


class SubscriptionLifecycleManager:
    def __init__(self, accounts=None, plans=None, clock=None):
        self.accounts = accounts if accounts is not None else account_store
        self.plans = plans if plans is not None else plan_catalog
        self.clock = clock if clock is not None else system_clock

    async def _snapshot(self, account_id: str) -> Dict[str, Any]:
        account = await self.accounts.require_account(account_id)
        return account.subscription.model_dump(mode="json")

    async def _require_plan(self, plan_id: Optional[str]) -> Plan:
        plan = await self.plans.get_plan(plan_id)
        if plan is None:
            raise NotFoundError("Subscription plan not found", {"plan_id": plan_id})
        return plan

    @staticmethod
    def _payment_recorded(sub: Subscription, payment_id: str) -> bool:
        return any(p.gateway_payment_id == payment_id for p in sub.payment_history)

    @staticmethod
    def _already_recorded(account_id: str, sub: Subscription, payment_id: str) -> ServiceResult:
        logger.info("PAYMENT_ALREADY_RECORDED account_id=%s payment_id=%s", account_id, payment_id)
        return ServiceResult.ok(
            "Payment already recorded",
            {"applied": False, "duplicate": True, "subscription": sub.model_dump(mode="json")},
        )

    # -------------------------------------------------------------------------
    # Trial
    # -------------------------------------------------------------------------

    @service_boundary("activate_free_trial")
    async def activate_free_trial(self, account_id: str) -> ServiceResult:
        async with self.accounts.lock_for(account_id):
            account = await self.accounts.require_account(account_id)
            sub = account.subscription
            now = self.clock.now()

            if is_live(sub, now):
                logger.info("TRIAL_SKIPPED account_id=%s status=%s (live subscription)", account_id, sub.status.value)
                return ServiceResult.ok(
                    "Subscription already active",
                    {"activated": False, "subscription": sub.model_dump(mode="json")},
                )
            if sub.trial_used_at is not None or sub.trial_end_date is not None:
                raise ConflictError(
                    "Free trial has already been used for this account",
                    {"reason": "TRIAL_USED_BEFORE", "status": sub.status.value},
                )

            trial_plan = await self.plans.get_trial_plan()
            if trial_plan is None:
                raise NotFoundError("Free trial plan is not configured")

            days = trial_plan.trial_period_days or DEFAULT_TRIAL_PERIOD_DAYS
            trial_end = now + timedelta(days=days)
            fields = {
                "subscription.status": SubscriptionStatus.TRIAL.value,
                "subscription.plan_id": trial_plan.plan_id,
                "subscription.billing_cycle": BillingCycle.TRIAL.value,
                "subscription.start_date": now,
                "subscription.end_date": trial_end,
                "subscription.trial_end_date": trial_end,
                "subscription.trial_used_at": now,
                "subscription.cancelled_at": None,
                "subscription.payment_status": None,
                "subscription.total_beds": plan_bed_ceiling(trial_plan),
                "subscription.total_branches": plan_branch_ceiling(trial_plan),
                "subscription.usage": {"beds_used": 0, "branches_used": 0},
                "subscription.custom_pricing": None,
            }
            applied = await self.accounts.update_account(
                account_id, fields, guard={"subscription.status": sub.status.value}
            )
            if not applied:
                raise TransientStoreError("Subscription changed while activating trial; retry")

            logger.info("TRIAL_ACTIVATED account_id=%s plan_id=%s trial_end=%s", account_id, trial_plan.plan_id, trial_end.isoformat())
            await create_audit_log(
                action=AuditAction.TRIAL_ACTIVATED,
                actor_id=account_id,
                account_id=account_id,
                resource_type="subscription",
                resource_id=trial_plan.plan_id,
                before_state={"status": sub.status.value},
                after_state={"status": SubscriptionStatus.TRIAL.value, "trial_end_date": trial_end.isoformat()},
            )
            return ServiceResult.ok(
                f"Free trial activated for {days} days",
                {"activated": True, "subscription": await self._snapshot(account_id)},
            )

    async def ensure_trial_on_login(self, account_id: str) -> ServiceResult:
        """Login hook: grant the one-time trial when nothing live exists, otherwise report state."""
        result = await self.activate_free_trial(account_id)
        if result.success or result.error_code != ConflictError.code:
            return result
        return await self.get_subscription(account_id)

    # -------------------------------------------------------------------------
    # Paid subscription
    # -------------------------------------------------------------------------

    @service_boundary("subscribe_user")
    async def subscribe_user(
        self,
        account_id: str,
        plan_id: str,
        billing_cycle: Union[BillingCycle, str],
        total_beds: int,
        total_branches: int = BASE_BRANCH_COUNT,
        payment_status: Union[PaymentStatus, str] = PaymentStatus.PENDING,
        allow_upgrade: bool = False,
        payment_record: Optional[PaymentRecord] = None,
        actor_id: Optional[str] = None,
    ) -> ServiceResult:
        """Move the account onto plan_id as an active subscription.

        With payment_record, the record is appended in the same write, guarded on its
        gateway_payment_id being absent; a guard miss reports duplicate=True and
        changes nothing. A payment already in the history is acknowledged before the
        plan and cycle are validated, so redeliveries succeed after the plan is retired.
        """
        if payment_record is not None:
            recorded = await self.accounts.require_account(account_id)
            if self._payment_recorded(recorded.subscription, payment_record.gateway_payment_id):
                return self._already_recorded(account_id, recorded.subscription, payment_record.gateway_payment_id)

        cycle = _coerce(BillingCycle, billing_cycle, "billing cycle")
        if cycle not in PAID_BILLING_CYCLES:
            raise ValidationError("Billing cycle must be monthly or annual")
        require_positive_int(total_beds, "total beds")
        require_positive_int(total_branches, "total branches")
        pay_status = _coerce(PaymentStatus, payment_status, "payment status")

        plan = await self._require_plan(plan_id)
        if plan.status != PlanStatus.ACTIVE:
            raise ValidationError("Subscription plan is not active", {"plan_id": plan_id})

        async with self.accounts.lock_for(account_id):
            account = await self.accounts.require_account(account_id)
            sub = account.subscription
            now = self.clock.now()

            if sub.status == SubscriptionStatus.ACTIVE and is_live(sub, now) and not allow_upgrade:
                raise ConflictError(
                    "User already has an active subscription",
                    {"plan_id": sub.plan_id, "end_date": as_utc(sub.end_date).isoformat()},
                )

            custom_pricing = None
            if total_beds > plan.base_bed_count or total_branches > BASE_BRANCH_COUNT:
                custom_pricing = to_document(build_custom_pricing(plan, total_beds, total_branches, now))

            end_date = add_months(now, 1) if cycle == BillingCycle.MONTHLY else add_years(now, 1)
            fields = {
                "subscription.status": SubscriptionStatus.ACTIVE.value,
                "subscription.plan_id": plan.plan_id,
                "subscription.billing_cycle": cycle.value,
                "subscription.start_date": now,
                "subscription.end_date": end_date,
                "subscription.trial_end_date": None,
                "subscription.cancelled_at": None,
                "subscription.payment_status": pay_status.value,
                "subscription.total_beds": total_beds,
                "subscription.total_branches": total_branches,
                "subscription.custom_pricing": custom_pricing,
            }

            if payment_record is not None:
                guard = {"subscription.payment_history.gateway_payment_id": {"$ne": payment_record.gateway_payment_id}}
                push = {"subscription.payment_history": to_document(payment_record)}
            else:
                guard = {"subscription.status": sub.status.value}
                push = None

            applied = await self.accounts.update_account(account_id, fields, guard=guard, push=push)
            if not applied:
                if payment_record is not None:
                    return self._already_recorded(account_id, sub, payment_record.gateway_payment_id)
                raise ConflictError("Subscription changed concurrently; retry", {"status": sub.status.value})

            logger.info(
                "SUBSCRIPTION_ACTIVATED account_id=%s plan_id=%s cycle=%s beds=%s branches=%s end=%s",
                account_id, plan.plan_id, cycle.value, total_beds, total_branches, end_date.isoformat(),
            )
            await create_audit_log(
                action=AuditAction.SUBSCRIPTION_ACTIVATED,
                actor_id=actor_id or account_id,
                account_id=account_id,
                resource_type="subscription",
                resource_id=plan.plan_id,
                before_state={"status": sub.status.value, "plan_id": sub.plan_id},
                after_state={"status": SubscriptionStatus.ACTIVE.value, "plan_id": plan.plan_id},
                metadata={
                    "billing_cycle": cycle.value,
                    "total_beds": total_beds,
                    "total_branches": total_branches,
                    "payment_status": pay_status.value,
                    "gateway_payment_id": payment_record.gateway_payment_id if payment_record else None,
                },
            )
            return ServiceResult.ok(
                "Subscription activated",
                {"applied": True, "duplicate": False, "subscription": await self._snapshot(account_id)},
            )

    # -------------------------------------------------------------------------
    # Capacity top-ups
    # -------------------------------------------------------------------------

    async def _active_subscription_and_plan(self, account_id: str):
        account = await self.accounts.require_account(account_id)
        sub = account.subscription
        if effective_status(sub, self.clock.now()) != SubscriptionStatus.ACTIVE:
            raise ConflictError("No active subscription found", {"status": sub.status.value})
        plan = await self._require_plan(sub.plan_id)
        return sub, plan

    async def _persist_top_up(self, account_id, sub, plan, total_beds, total_branches, resource, quote, actor_id):
        now = self.clock.now()
        custom = build_custom_pricing(plan, total_beds, total_branches, now)
        applied = await self.accounts.update_account(
            account_id,
            {
                "subscription.custom_pricing": to_document(custom),
                "subscription.total_beds": total_beds,
                "subscription.total_branches": total_branches,
            },
            guard={"subscription.status": SubscriptionStatus.ACTIVE.value},
        )
        if not applied:
            raise ConflictError("Subscription is no longer active")

        logger.info(
            "CAPACITY_TOPUP account_id=%s resource=%s beds=%s branches=%s monthly=%s",
            account_id, resource, total_beds, total_branches, custom.total_monthly_price,
        )
        await create_audit_log(
            action=AuditAction.CAPACITY_TOPUP,
            actor_id=actor_id or account_id,
            account_id=account_id,
            resource_type="subscription",
            resource_id=plan.plan_id,
            before_state=sub.custom_pricing.model_dump(mode="json", exclude={"updated_at"}) if sub.custom_pricing else None,
            after_state=custom.model_dump(mode="json", exclude={"updated_at"}),
            metadata={"resource": resource},
        )
        return ServiceResult.ok(
            f"{resource.capitalize()} capacity updated",
            {
                "custom_pricing": custom.model_dump(mode="json"),
                "top_up_units": quote.top_up_units,
                "top_up_cost": quote.top_up_cost,
                "total_beds": total_beds,
                "total_branches": total_branches,
            },
        )

    @service_boundary("add_beds")
    async def add_beds(
        self,
        account_id: str,
        additional_beds: int,
        new_max_beds: Optional[int] = None,
        actor_id: Optional[str] = None,
    ) -> ServiceResult:
        validate_additional_units(additional_beds, "additional beds")
        if new_max_beds is not None:
            require_positive_int(new_max_beds, "new max beds")

        async with self.accounts.lock_for(account_id):
            sub, plan = await self._active_subscription_and_plan(account_id)
            current = sub.custom_pricing.max_beds_allowed if sub.custom_pricing else plan.base_bed_count
            total_beds = new_max_beds if new_max_beds is not None else current + additional_beds
            if total_beds < plan.base_bed_count:
                raise ValidationError(
                    f"Bed count cannot be less than base bed count ({plan.base_bed_count})",
                    {"requested": total_beds},
                )
            quote = compute_bed_top_up(plan, total_beds)
            total_branches = sub.custom_pricing.max_branches_allowed if sub.custom_pricing else max(sub.total_branches, BASE_BRANCH_COUNT)
            return await self._persist_top_up(account_id, sub, plan, total_beds, total_branches, "beds", quote, actor_id)

    @service_boundary("add_branches")
    async def add_branches(
        self,
        account_id: str,
        additional_branches: int,
        new_max_branches: Optional[int] = None,
        actor_id: Optional[str] = None,
    ) -> ServiceResult:
        validate_additional_units(additional_branches, "additional branches")
        if new_max_branches is not None:
            require_positive_int(new_max_branches, "new max branches")

        async with self.accounts.lock_for(account_id):
            sub, plan = await self._active_subscription_and_plan(account_id)
            current = sub.custom_pricing.max_branches_allowed if sub.custom_pricing else BASE_BRANCH_COUNT
            total_branches = new_max_branches if new_max_branches is not None else current + additional_branches
            quote = compute_branch_top_up(plan, total_branches)
            total_beds = sub.custom_pricing.max_beds_allowed if sub.custom_pricing else max(sub.total_beds, plan.base_bed_count)
            return await self._persist_top_up(account_id, sub, plan, total_beds, total_branches, "branches", quote, actor_id)

    # -------------------------------------------------------------------------
    # Restrictions
    # -------------------------------------------------------------------------

    @service_boundary("check_capacity")
    async def check_capacity(
        self,
        account_id: str,
        resource_type: Union[ResourceType, str],
        requested_count: int = 1,
        module_name: Optional[str] = None,
    ) -> ServiceResult:
        """Advisory capacity check: {allowed, current_usage, limit, remaining, message}."""
        resource = _coerce(ResourceType, resource_type, "resource type")
        if resource == ResourceType.MODULE:
            if not module_name:
                raise ValidationError("module_name is required for module checks")
        else:
            require_positive_int(requested_count, "requested count")

        account = await self.accounts.require_account(account_id)
        sub = account.subscription
        denied = {"allowed": False, "current_usage": 0, "limit": 0, "remaining": 0}

        if not sub.plan_id:
            return ServiceResult.ok("No active subscription found", dict(denied, message="No active subscription found"))
        status = effective_status(sub, self.clock.now())
        if status.value not in LIVE_SUBSCRIPTION_STATUSES:
            message = f"Subscription is {status.value}"
            return ServiceResult.ok(message, dict(denied, message=message))
        plan = await self.plans.get_plan(sub.plan_id)
        if plan is None:
            return ServiceResult.ok("Subscription plan not found", dict(denied, message="Subscription plan not found"))

        if resource == ResourceType.MODULE:
            module = next((m for m in plan.modules if m.module_name == module_name and m.enabled), None)
            allowed = module is not None
            message = "Module available" if allowed else f"Module '{module_name}' is not included in your plan"
            return ServiceResult.ok(message, {
                "allowed": allowed,
                "current_usage": 0,
                "limit": module.limit if module else 0,
                "remaining": module.limit if module and module.limit is not None else 0,
                "message": message,
            })

        if resource == ResourceType.BEDS:
            used, limit = sub.usage.beds_used, bed_ceiling(sub, plan)
        else:
            used, limit = sub.usage.branches_used, branch_ceiling(sub, plan)
        allowed = used + requested_count <= limit
        remaining = max(0, limit - used)
        message = "Within limit" if allowed else (
            f"{resource.value.capitalize()} limit reached: {remaining} of {limit} remaining, {requested_count} requested"
        )
        return ServiceResult.ok(message, {
            "allowed": allowed,
            "current_usage": used,
            "limit": limit,
            "remaining": remaining,
            "message": message,
        })

    # -------------------------------------------------------------------------
    # Expiry, cancellation, extension, usage
    # -------------------------------------------------------------------------

    @service_boundary("expire_if_lapsed")
    async def expire_if_lapsed(self, account_id: str) -> ServiceResult:
        """Write the expired status for a lapsed subscription. Safe to repeat."""
        async with self.accounts.lock_for(account_id):
            account = await self.accounts.require_account(account_id)
            sub = account.subscription
            now = self.clock.now()
            if sub.status.value not in LIVE_SUBSCRIPTION_STATUSES or effective_status(sub, now) != SubscriptionStatus.EXPIRED:
                return ServiceResult.ok("Subscription not lapsed", {"expired": False})

            applied = await self.accounts.update_account(
                account_id,
                {"subscription.status": SubscriptionStatus.EXPIRED.value},
                guard={"subscription.status": sub.status.value, "subscription.end_date": sub.end_date},
            )
            if not applied:
                logger.info("EXPIRY_SKIPPED account_id=%s (subscription changed since read)", account_id)
                return ServiceResult.ok("Subscription changed since check; left unchanged", {"expired": False})

            logger.info("SUBSCRIPTION_EXPIRED account_id=%s previous_status=%s", account_id, sub.status.value)
            await create_audit_log(
                action=AuditAction.SUBSCRIPTION_EXPIRED,
                actor_id="system",
                account_id=account_id,
                resource_type="subscription",
                resource_id=sub.plan_id,
                before_state={"status": sub.status.value},
                after_state={"status": SubscriptionStatus.EXPIRED.value},
            )
            return ServiceResult.ok("Subscription expired", {"expired": True})

    async def sweep_expired_subscriptions(self, limit: int = 500) -> int:
        """Expire lapsed subscriptions one account at a time. Returns how many were written."""
        account_ids = await self.accounts.find_lapsed_account_ids(self.clock.now(), limit=limit)
        expired = 0
        for account_id in account_ids:
            result = await self.expire_if_lapsed(account_id)
            if result.success and result.data.get("expired"):
                expired += 1
            elif not result.success:
                logger.warning("Expiry sweep failed for account_id=%s: %s", account_id, result.message)
        return expired

    @service_boundary("cancel_subscription")
    async def cancel_subscription(
        self,
        account_id: str,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> ServiceResult:
        async with self.accounts.lock_for(account_id):
            account = await self.accounts.require_account(account_id)
            sub = account.subscription
            if sub.status == SubscriptionStatus.CANCELLED:
                return ServiceResult.ok(
                    "Subscription already cancelled",
                    {"cancelled": False, "subscription": sub.model_dump(mode="json")},
                )
            if sub.status == SubscriptionStatus.FREE and not sub.plan_id:
                raise ConflictError("No subscription to cancel")

            now = self.clock.now()
            applied = await self.accounts.update_account(
                account_id,
                {
                    "subscription.status": SubscriptionStatus.CANCELLED.value,
                    "subscription.cancelled_at": now,
                    "subscription.auto_renew": False,
                },
                guard={"subscription.status": sub.status.value},
            )
            if not applied:
                raise ConflictError("Subscription changed concurrently; retry")

            logger.info("SUBSCRIPTION_CANCELLED account_id=%s previous_status=%s", account_id, sub.status.value)
            await create_audit_log(
                action=AuditAction.SUBSCRIPTION_CANCELLED,
                actor_id=actor_id or account_id,
                account_id=account_id,
                resource_type="subscription",
                resource_id=sub.plan_id,
                before_state={"status": sub.status.value},
                after_state={"status": SubscriptionStatus.CANCELLED.value},
                metadata={"reason": reason} if reason else None,
            )
            return ServiceResult.ok(
                "Subscription cancelled",
                {"cancelled": True, "subscription": await self._snapshot(account_id)},
            )

    @service_boundary("extend_subscription")
    async def extend_subscription(
        self,
        account_id: str,
        days: int,
        actor_id: Optional[str] = None,
    ) -> ServiceResult:
        require_positive_int(days, "days")
        async with self.accounts.lock_for(account_id):
            account = await self.accounts.require_account(account_id)
            sub = account.subscription
            if not sub.plan_id or sub.status in (SubscriptionStatus.FREE, SubscriptionStatus.CANCELLED):
                raise ConflictError("No subscription to extend", {"status": sub.status.value})

            now = self.clock.now()
            current_end = as_utc(sub.end_date)
            new_end = max(current_end, now) + timedelta(days=days) if current_end else now + timedelta(days=days)
            is_trial = sub.billing_cycle == BillingCycle.TRIAL
            fields: Dict[str, Any] = {"subscription.end_date": new_end}
            if sub.status == SubscriptionStatus.EXPIRED:
                fields["subscription.status"] = (SubscriptionStatus.TRIAL if is_trial else SubscriptionStatus.ACTIVE).value
            if is_trial:
                fields["subscription.trial_end_date"] = new_end

            applied = await self.accounts.update_account(
                account_id, fields, guard={"subscription.status": sub.status.value}
            )
            if not applied:
                raise ConflictError("Subscription changed concurrently; retry")

            logger.info("SUBSCRIPTION_EXTENDED account_id=%s days=%s new_end=%s", account_id, days, new_end.isoformat())
            await create_audit_log(
                action=AuditAction.SUBSCRIPTION_EXTENDED,
                actor_id=actor_id or "system",
                account_id=account_id,
                resource_type="subscription",
                resource_id=sub.plan_id,
                before_state={"end_date": current_end.isoformat() if current_end else None, "status": sub.status.value},
                after_state={"end_date": new_end.isoformat(), "status": fields.get("subscription.status", sub.status.value)},
            )
            return ServiceResult.ok(
                f"Subscription extended by {days} days",
                {"subscription": await self._snapshot(account_id)},
            )

    @service_boundary("increment_usage")
    async def increment_usage(self, account_id: str, beds_delta: int = 0, branches_delta: int = 0) -> ServiceResult:
        for label, delta in (("beds delta", beds_delta), ("branches delta", branches_delta)):
            if isinstance(delta, bool) or not isinstance(delta, int) or delta < 0:
                raise ValidationError(f"{label} must be a non-negative whole number")
        if beds_delta == 0 and branches_delta == 0:
            raise ValidationError("Nothing to update")

        inc = {}
        if beds_delta:
            inc["subscription.usage.beds_used"] = beds_delta
        if branches_delta:
            inc["subscription.usage.branches_used"] = branches_delta
        applied = await self.accounts.update_account(account_id, {}, inc=inc)
        if not applied:
            raise NotFoundError("Account not found", {"account_id": account_id})

        account = await self.accounts.require_account(account_id)
        return ServiceResult.ok("Usage updated", {"usage": account.subscription.usage.model_dump()})

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @service_boundary("get_subscription")
    async def get_subscription(self, account_id: str) -> ServiceResult:
        account = await self.accounts.require_account(account_id)
        sub = account.subscription
        plan = await self.plans.get_plan(sub.plan_id) if sub.plan_id else None
        return ServiceResult.ok("Subscription loaded", {"subscription": build_subscription_view(sub, plan, self.clock.now())})


subscription_lifecycle = SubscriptionLifecycleManager()
