"""
Shared job runner for scheduled background jobs.
Used by server (scheduler) and the superadmin run-now endpoint.
Each run_* returns a dict with "message" (and optionally "count").
"""
import logging

logger = logging.getLogger(__name__)


async def run_subscription_expiry_sweep():
    try:
        from services.subscription_lifecycle import subscription_lifecycle
        count = await subscription_lifecycle.sweep_expired_subscriptions()
        logger.info(f"Subscription expiry sweep completed: {count} subscriptions expired")
        return {"message": f"Subscriptions expired: {count}", "count": count}
    except Exception as e:
        logger.error(f"Subscription expiry sweep failed: {e}")
        raise
