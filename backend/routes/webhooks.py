"""Webhook Routes - payment gateway webhooks.

POST /api/webhooks/razorpay - Razorpay payment events.
- Signature verified over the raw body (X-Razorpay-Signature)
- Idempotent on the gateway payment id; redeliveries return 200 without side effects
- 400 for bad signature / malformed payload, 500 when applying failed so Razorpay retries
"""
from fastapi import APIRouter, Header, HTTPException, Request
from typing import Optional
import logging

from services.payment_reconciler import payment_reconciler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/razorpay")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None, alias="X-Razorpay-Signature"),
):
    payload = await request.body()
    result = await payment_reconciler.handle_payment_captured_event(payload, x_razorpay_signature)

    if not result.success:
        logger.warning(
            "Razorpay webhook rejected status=%s code=%s message=%s",
            result.status_code, result.error_code, result.message,
        )
        raise HTTPException(
            status_code=result.status_code,
            detail={"message": result.message, "error_code": result.error_code, "retryable": result.retryable},
        )

    return {"status": "ok", "message": result.message, **result.data}
