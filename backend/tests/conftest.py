"""
Pytest configuration and shared test helpers for backend tests.

_InMemoryDb stands in for the motor database: it implements the subset of
MongoDB query/update semantics the services use (dotted paths through
embedded arrays, $ne/$in/$lt/$exists filters, $set/$push/$inc updates).
Every read and write yields to the event loop first so concurrent tasks
interleave the way they would against a real server.
"""
import asyncio
import copy
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

# Skip heavy server startup (MongoDB, scheduler) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest

from database import database
from models import AdminAccount
from services.account_store import AccountStore
from services.clock import FixedClock
from services.plan_catalog import DEFAULT_PLANS, PlanCatalog
from services.subscription_lifecycle import SubscriptionLifecycleManager

NOW = datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)

BASIC_PLAN = {
    "plan_id": "plan_basic",
    "plan_name": "Basic",
    "billing_cycle": "monthly",
    "base_price": 1000,
    "annual_discount": 0,
    "base_bed_count": 10,
    "top_up_price_per_bed": 50,
    "max_beds_allowed": None,
    "allow_multiple_branches": False,
    "branch_count": 1,
    "cost_per_branch": 0,
    "modules": [
        {"module_name": "tenant_management", "enabled": True, "limit": None},
        {"module_name": "advanced_analytics", "enabled": False, "limit": None},
    ],
    "status": "active",
}

MULTI_BRANCH_PLAN = {
    "plan_id": "plan_multi",
    "plan_name": "Multi Branch",
    "billing_cycle": "monthly",
    "base_price": 2000,
    "base_bed_count": 20,
    "top_up_price_per_bed": 40,
    "max_beds_allowed": 25,
    "allow_multiple_branches": True,
    "branch_count": 5,
    "cost_per_branch": 300,
    "status": "active",
}

RETIRED_PLAN = dict(BASIC_PLAN, plan_id="plan_retired", plan_name="Retired", status="inactive")


# ---------------------------------------------------------------------------
# In-memory MongoDB fake
# ---------------------------------------------------------------------------

def _resolve(value, parts):
    if not parts:
        return [value] + (list(value) if isinstance(value, list) else [])
    if isinstance(value, list):
        found = []
        for item in value:
            found.extend(_resolve(item, parts))
        return found
    if not isinstance(value, dict) or parts[0] not in value:
        return []
    return _resolve(value[parts[0]], parts[1:])


def _matches(doc, query):
    for path, condition in query.items():
        candidates = _resolve(doc, path.split("."))
        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            for op, operand in condition.items():
                if op == "$ne" and any(c == operand for c in candidates):
                    return False
                if op == "$in" and not any(c in operand for c in candidates):
                    return False
                if op == "$lt" and not any(c is not None and not isinstance(c, list) and c < operand for c in candidates):
                    return False
                if op == "$exists" and bool(candidates) != bool(operand):
                    return False
        elif not any(c == condition for c in candidates):
            return False
    return True


def _set_path(doc, path, value):
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        if not isinstance(target.get(part), dict):
            target[part] = {}
        target = target[part]
    target[parts[-1]] = value


def _get_path(doc, path, default=None):
    target = doc
    for part in path.split("."):
        if not isinstance(target, dict) or part not in target:
            return default
        target = target[part]
    return target


class _FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, key, direction=1):
        self._docs.sort(key=lambda d: _get_path(d, key) or 0, reverse=direction < 0)
        return self

    def limit(self, n):
        self._docs = self._docs[:n]
        return self

    async def to_list(self, length=None):
        await asyncio.sleep(0)
        return copy.deepcopy(self._docs[:length] if length else self._docs)


class _FakeCollection:
    def __init__(self):
        self.docs = []
        self.fail_inserts = False

    async def find_one(self, query, projection=None, **kw):
        await asyncio.sleep(0)
        for doc in self.docs:
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def find(self, query=None, projection=None, **kw):
        return _FakeCursor([copy.deepcopy(d) for d in self.docs if _matches(d, query or {})])

    async def insert_one(self, doc, **kw):
        await asyncio.sleep(0)
        if self.fail_inserts:
            raise RuntimeError("insert failed")
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=len(self.docs))

    def _apply(self, doc, update):
        for path, value in update.get("$set", {}).items():
            _set_path(doc, path, copy.deepcopy(value))
        for path, value in update.get("$push", {}).items():
            current = _get_path(doc, path)
            if current is None:
                current = []
                _set_path(doc, path, current)
            current.append(copy.deepcopy(value))
        for path, value in update.get("$inc", {}).items():
            _set_path(doc, path, (_get_path(doc, path) or 0) + value)
        for path, value in update.get("$setOnInsert", {}).items():
            _set_path(doc, path, copy.deepcopy(value))

    async def update_one(self, query, update, upsert=False, **kw):
        await asyncio.sleep(0)
        for doc in self.docs:
            if _matches(doc, query):
                before = copy.deepcopy(doc)
                self._apply(doc, {k: v for k, v in update.items() if k != "$setOnInsert"})
                return SimpleNamespace(matched_count=1, modified_count=int(before != doc))
        if upsert:
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            self._apply(doc, update)
            self.docs.append(doc)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def update_many(self, query, update, **kw):
        await asyncio.sleep(0)
        modified = 0
        for doc in self.docs:
            if _matches(doc, query):
                before = copy.deepcopy(doc)
                self._apply(doc, update)
                modified += int(before != doc)
        return SimpleNamespace(matched_count=modified, modified_count=modified)


class _InMemoryDb:
    def __init__(self):
        self._collections = {}

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self._collections.setdefault(name, _FakeCollection())


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_db(monkeypatch):
    """In-memory db wired into the global database singleton, seeded with the test plans."""
    db = _InMemoryDb()
    for plan in DEFAULT_PLANS + [BASIC_PLAN, MULTI_BRANCH_PLAN, RETIRED_PLAN]:
        db.subscription_plans.docs.append(copy.deepcopy(plan))
    monkeypatch.setattr(database, "db", db)
    return db


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def accounts(fake_db):
    return AccountStore(db=fake_db)


@pytest.fixture
def plans(fake_db):
    return PlanCatalog(db=fake_db)


@pytest.fixture
def lifecycle(accounts, plans, clock):
    return SubscriptionLifecycleManager(accounts=accounts, plans=plans, clock=clock)


@pytest.fixture
def make_account(accounts):
    """Create an account; keyword args override AdminAccount fields (subscription as a dict)."""
    async def _make(**overrides):
        account = AdminAccount(email=overrides.pop("email", None), **overrides)
        await accounts.create_account(account)
        return account.account_id
    return _make


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app)."""
    from fastapi.testclient import TestClient
    from server import app
    return TestClient(app)
