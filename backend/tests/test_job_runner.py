"""Scheduled job entry points (job_runner)."""
import sys
from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from job_runner import run_subscription_expiry_sweep
from conftest import NOW


@pytest.mark.asyncio
async def test_expiry_sweep_reports_count(lifecycle, make_account, accounts):
    acct = await make_account(subscription={
        "status": "trial",
        "plan_id": "plan_free_trial",
        "billing_cycle": "trial",
        "end_date": NOW - timedelta(days=1),
        "trial_end_date": NOW - timedelta(days=1),
    })
    with patch("services.subscription_lifecycle.subscription_lifecycle", lifecycle):
        result = await run_subscription_expiry_sweep()

    assert result == {"message": "Subscriptions expired: 1", "count": 1}
    assert (await accounts.get_account(acct)).subscription.status.value == "expired"


@pytest.mark.asyncio
async def test_expiry_sweep_failure_propagates():
    failing = AsyncMock(side_effect=RuntimeError("scheduler db down"))
    with patch("services.subscription_lifecycle.subscription_lifecycle.sweep_expired_subscriptions", failing):
        with pytest.raises(RuntimeError):
            await run_subscription_expiry_sweep()
