"""Payment Webhook Reconciler - applies Razorpay payment events to subscriptions exactly once.

Flow for payment.captured / payment.authorized:
1. Verify X-Razorpay-Signature over the raw body (rejected before anything is read)
2. Extract payment entity + checkout notes (account, plan, capacity, billing cycle)
3. subscribe_user(..., payment_record=record): activation and the PaymentRecord
   append are one conditional write keyed on gateway_payment_id, so a redelivered
   or concurrent duplicate changes nothing
4. Emit subscription_updated (best effort, only for the delivery that applied)

payment.failed only emits a notification. Other events are acknowledged and ignored.
The apply step runs under WEBHOOK_APPLY_TIMEOUT_SECONDS; a timeout is reported as
retryable so the gateway redelivers; the timed-out apply keeps running and its
redelivery is acknowledged as a duplicate.
"""
import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from errors import (
    AuthenticationError,
    ServiceResult,
    TransientStoreError,
    ValidationError,
    service_boundary,
)
from models import AuditAction, PaymentRecord, PaymentStatus, PlanSnapshot
from services.clock import system_clock
from services.gateway_signature import signature_verifier
from services.notifications import PAYMENT_FAILED, SUBSCRIPTION_UPDATED, notification_dispatcher
from services.subscription_lifecycle import subscription_lifecycle
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

WEBHOOK_APPLY_TIMEOUT_SECONDS = float(os.getenv("WEBHOOK_APPLY_TIMEOUT_SECONDS", "10"))

PAYMENT_SUCCESS_EVENTS = frozenset({"payment.captured", "payment.authorized"})
PAYMENT_FAILED_EVENT = "payment.failed"

# Checkout notes are accepted in snake_case or the web console's camelCase
_NOTE_KEYS = {
    "account_id": ("account_id", "userId"),
    "plan_id": ("plan_id", "subscriptionPlanId", "planId"),
    "plan_name": ("plan_name", "planName"),
    "bed_count": ("bed_count", "bedCount"),
    "branch_count": ("branch_count", "branchCount"),
    "billing_cycle": ("billing_cycle", "billingCycle"),
}
_REQUIRED_NOTES = ("account_id", "plan_id", "bed_count", "billing_cycle")


def _note(notes: Dict[str, Any], field: str) -> Any:
    for key in _NOTE_KEYS[field]:
        value = notes.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_int(value: Any, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field} in payment notes: {value!r}")


def extract_payment(event: Dict[str, Any], received_at: datetime) -> Tuple[PaymentRecord, Dict[str, Any]]:
    """Build the PaymentRecord and activation parameters from a payment event."""
    payload = event.get("payload") or {}
    payment = (payload.get("payment") or {}).get("entity") or {}
    order = (payload.get("order") or {}).get("entity") or {}
    notes = {**(payment.get("notes") or {}), **(order.get("notes") or {})}

    payment_id = payment.get("id")
    if not payment_id:
        raise ValidationError("Payment id missing from webhook payload")
    missing = [f for f in _REQUIRED_NOTES if _note(notes, f) is None]
    if missing:
        raise ValidationError("Missing required payment notes", {"missing": missing, "payment_id": payment_id})
    if payment.get("amount") is None:
        raise ValidationError("Payment amount missing from webhook payload", {"payment_id": payment_id})

    bed_count = _as_int(_note(notes, "bed_count"), "bed_count")
    branch_count = _as_int(_note(notes, "branch_count") or 1, "branch_count")
    plan_id = str(_note(notes, "plan_id"))
    plan_name = _note(notes, "plan_name")
    billing_cycle = str(_note(notes, "billing_cycle"))

    paid_at = received_at
    if payment.get("created_at"):
        paid_at = datetime.fromtimestamp(int(payment["created_at"]), tz=timezone.utc)

    record = PaymentRecord(
        gateway_payment_id=payment_id,
        gateway_order_id=payment.get("order_id") or order.get("id"),
        # Gateway amounts are in the minor unit (paise)
        amount=_as_int(payment["amount"], "amount") / 100,
        currency=(payment.get("currency") or "INR").upper(),
        status="paid",
        payment_method=payment.get("method"),
        billing_cycle=billing_cycle if billing_cycle in ("monthly", "annual") else None,
        plan_snapshot=PlanSnapshot(
            plan_id=plan_id,
            plan_name=plan_name,
            bed_count=bed_count,
            branch_count=branch_count,
        ),
        payment_date=paid_at,
        description=f"Subscription payment for {plan_name or plan_id}",
    )
    params = {
        "account_id": str(_note(notes, "account_id")),
        "plan_id": plan_id,
        "billing_cycle": billing_cycle,
        "total_beds": bed_count,
        "total_branches": branch_count,
    }
    return record, params


class PaymentWebhookReconciler:
    def __init__(self, lifecycle=None, notifier=None, verifier=None, clock=None, apply_timeout: Optional[float] = None):
        self.lifecycle = lifecycle if lifecycle is not None else subscription_lifecycle
        self.notifier = notifier if notifier is not None else notification_dispatcher
        self.verifier = verifier if verifier is not None else signature_verifier
        self.clock = clock if clock is not None else system_clock
        self.apply_timeout = apply_timeout if apply_timeout is not None else WEBHOOK_APPLY_TIMEOUT_SECONDS
        self._inflight = set()

    @service_boundary("handle_payment_captured_event")
    async def handle_payment_captured_event(self, raw_body: bytes, signature: Optional[str]) -> ServiceResult:
        try:
            self.verifier.verify(raw_body, signature)
        except AuthenticationError as e:
            logger.error("WEBHOOK_SIGNATURE_FAILED reason=%s body_bytes=%s", e.message, len(raw_body or b""))
            await create_audit_log(
                action=AuditAction.WEBHOOK_SIGNATURE_FAILED,
                actor_id="gateway",
                resource_type="webhook",
                metadata={"reason": e.message},
            )
            raise

        try:
            event = json.loads(raw_body)
        except (TypeError, ValueError):
            raise ValidationError("Invalid webhook payload")
        if not isinstance(event, dict):
            raise ValidationError("Invalid webhook payload")

        event_type = event.get("event")
        payment = ((event.get("payload") or {}).get("payment") or {}).get("entity") or {}
        logger.info("WEBHOOK_RECEIVED event=%s payment_id=%s order_id=%s", event_type, payment.get("id"), payment.get("order_id"))

        if event_type in PAYMENT_SUCCESS_EVENTS:
            return await self._apply_payment(event)
        if event_type == PAYMENT_FAILED_EVENT:
            return await self._record_failure(event)

        logger.info("WEBHOOK_IGNORED event=%s", event_type)
        return ServiceResult.ok("Event ignored", {"event": event_type, "ignored": True})

    async def _apply_payment(self, event: Dict[str, Any]) -> ServiceResult:
        record, params = extract_payment(event, self.clock.now())
        account_id = params["account_id"]

        # Shielded: after a timeout the apply task still finishes, audits and notifies.
        task = asyncio.create_task(self._apply_and_announce(record, params))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.apply_timeout)
        except asyncio.TimeoutError:
            logger.error(
                "WEBHOOK_APPLY_TIMEOUT payment_id=%s account_id=%s timeout=%ss",
                record.gateway_payment_id, account_id, self.apply_timeout,
            )
            raise TransientStoreError(
                "Timed out applying payment",
                {"payment_id": record.gateway_payment_id, "account_id": account_id},
            )

    async def _apply_and_announce(self, record: PaymentRecord, params: Dict[str, Any]) -> ServiceResult:
        account_id = params["account_id"]
        result = await self.lifecycle.subscribe_user(
            **params,
            payment_status=PaymentStatus.COMPLETED,
            allow_upgrade=True,
            payment_record=record,
            actor_id="gateway",
        )

        if not result.success:
            logger.error(
                "WEBHOOK_APPLY_FAILED payment_id=%s account_id=%s code=%s message=%s",
                record.gateway_payment_id, account_id, result.error_code, result.message,
            )
            if result.error_code != ValidationError.code:
                # Surface as a server failure so the gateway redelivers
                result.status_code = 500
                result.retryable = True
            return result

        if result.data.get("duplicate"):
            logger.info("WEBHOOK_DUPLICATE payment_id=%s account_id=%s", record.gateway_payment_id, account_id)
            return ServiceResult.ok(
                "Payment already processed",
                {"duplicate": True, "payment_id": record.gateway_payment_id, "account_id": account_id},
            )

        logger.info(
            "WEBHOOK_APPLIED payment_id=%s account_id=%s plan_id=%s amount=%s %s",
            record.gateway_payment_id, account_id, params["plan_id"], record.amount, record.currency,
        )
        await create_audit_log(
            action=AuditAction.PAYMENT_RECORDED,
            actor_id="gateway",
            account_id=account_id,
            resource_type="payment",
            resource_id=record.gateway_payment_id,
            metadata={
                "order_id": record.gateway_order_id,
                "amount": record.amount,
                "currency": record.currency,
                "plan_id": params["plan_id"],
            },
        )
        await self.notifier.emit(account_id, SUBSCRIPTION_UPDATED, {
            "payment_id": record.gateway_payment_id,
            "plan_id": params["plan_id"],
            "plan_name": record.plan_snapshot.plan_name,
            "amount": record.amount,
            "currency": record.currency,
            "subscription": result.data.get("subscription"),
        })
        return ServiceResult.ok(
            "Payment processed",
            {"duplicate": False, "payment_id": record.gateway_payment_id, "account_id": account_id},
        )

    async def _record_failure(self, event: Dict[str, Any]) -> ServiceResult:
        payment = ((event.get("payload") or {}).get("payment") or {}).get("entity") or {}
        notes = payment.get("notes") or {}
        account_id = _note(notes, "account_id")
        logger.warning(
            "WEBHOOK_PAYMENT_FAILED payment_id=%s account_id=%s error=%s",
            payment.get("id"), account_id, payment.get("error_description"),
        )
        if account_id:
            await create_audit_log(
                action=AuditAction.PAYMENT_FAILED,
                actor_id="gateway",
                account_id=str(account_id),
                resource_type="payment",
                resource_id=payment.get("id"),
                metadata={"error_code": payment.get("error_code"), "error_description": payment.get("error_description")},
            )
            await self.notifier.emit(str(account_id), PAYMENT_FAILED, {
                "payment_id": payment.get("id"),
                "error_description": payment.get("error_description"),
            })
        return ServiceResult.ok("Payment failure recorded", {"event": PAYMENT_FAILED_EVENT, "payment_id": payment.get("id")})


payment_reconciler = PaymentWebhookReconciler()
