"""Tenant admin account persistence (admin_accounts collection).

The Subscription and Onboarding records are embedded sub-documents of the
account, so every transition is a single-document update. Callers that
read-modify-write hold the per-account lock from lock_for(); cross-process
safety comes from the guard filter passed to update_account.
"""
import asyncio
import logging
import weakref
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from database import database
from errors import NotFoundError
from models import AdminAccount, LIVE_SUBSCRIPTION_STATUSES, to_document

logger = logging.getLogger(__name__)


class AccountStore:
    def __init__(self, db=None):
        self._db = db
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _get_db(self):
        return self._db if self._db is not None else database.get_db()

    def lock_for(self, account_id: str) -> asyncio.Lock:
        """Lock serializing subscription transitions for one account.

        Held weakly; dropped once no caller references it.
        """
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    async def get_account(self, account_id: str) -> Optional[AdminAccount]:
        doc = await self._get_db().admin_accounts.find_one({"account_id": account_id}, {"_id": 0})
        return AdminAccount(**doc) if doc else None

    async def require_account(self, account_id: str) -> AdminAccount:
        account = await self.get_account(account_id)
        if account is None:
            raise NotFoundError("Account not found", {"account_id": account_id})
        return account

    async def create_account(self, account: AdminAccount) -> AdminAccount:
        await self._get_db().admin_accounts.insert_one(to_document(account))
        logger.info("Admin account created account_id=%s", account.account_id)
        return account

    async def update_account(
        self,
        account_id: str,
        set_fields: Dict[str, Any],
        guard: Optional[Dict[str, Any]] = None,
        push: Optional[Dict[str, Any]] = None,
        inc: Optional[Dict[str, int]] = None,
    ) -> bool:
        """Conditional single-document update. Returns True when the document was modified.

        guard adds filter clauses; if they no longer hold nothing is written.
        """
        query: Dict[str, Any] = {"account_id": account_id}
        if guard:
            query.update(guard)
        update: Dict[str, Any] = {"$set": {**set_fields, "updated_at": datetime.now(timezone.utc)}}
        if push:
            update["$push"] = push
        if inc:
            update["$inc"] = inc
        result = await self._get_db().admin_accounts.update_one(query, update)
        return result.modified_count > 0

    async def find_lapsed_account_ids(self, now: datetime, limit: int = 500) -> List[str]:
        """Accounts whose stored status is still live but whose end date has passed."""
        cursor = self._get_db().admin_accounts.find(
            {
                "subscription.status": {"$in": sorted(LIVE_SUBSCRIPTION_STATUSES)},
                "subscription.end_date": {"$lt": now},
            },
            {"_id": 0, "account_id": 1},
        ).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [d["account_id"] for d in docs]


account_store = AccountStore()
