"""Best-effort notification dispatch.

Events are written to the notification_events outbox; delivery (email, push,
websocket broadcast) is handled downstream. emit() never raises: a failed emit
is logged and reported in the result, and never undoes the caller's work.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from database import database
from models import NotificationEvent, to_document

logger = logging.getLogger(__name__)

SUBSCRIPTION_UPDATED = "subscription_updated"
PAYMENT_FAILED = "payment_failed"


@dataclass
class NotificationResult:
    outcome: str  # queued | failed
    event_id: Optional[str] = None
    error_message: Optional[str] = None


class NotificationDispatcher:
    def __init__(self, db=None):
        self._db = db

    def _get_db(self):
        return self._db if self._db is not None else database.get_db()

    async def emit(self, account_id: str, event_type: str, payload: Optional[Dict[str, Any]] = None) -> NotificationResult:
        event = NotificationEvent(account_id=account_id, event_type=event_type, payload=payload or {})
        try:
            await self._get_db().notification_events.insert_one(to_document(event))
            logger.info("NOTIFICATION_QUEUED event_type=%s account_id=%s event_id=%s", event_type, account_id, event.event_id)
            return NotificationResult(outcome="queued", event_id=event.event_id)
        except Exception as e:
            logger.warning("NOTIFICATION_FAILED event_type=%s account_id=%s error=%s", event_type, account_id, e)
            return NotificationResult(outcome="failed", error_message=str(e))


notification_dispatcher = NotificationDispatcher()
