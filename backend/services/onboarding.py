"""Onboarding State Machine.

pg_creation -> branch_setup -> pg_configuration -> completed

A step completes only after its collaborator (PG or Branch service) succeeds;
a collaborator failure leaves the stored onboarding record untouched. The
current step is never stored on its own: Onboarding.current_onboarding_step
derives it from the three step records, and the whole record is rewritten
on every step so the stored copy matches.

Steps are re-entrant. Re-running a completed step re-runs its action
(e.g. reconfiguring sharing types). Branch setup and configuration only require
a PG association, not the previous step.
"""
import logging
from typing import Any, Dict, List

from errors import ConflictError, NotFoundError, ServiceResult, service_boundary
from models import AdminAccount, AuditAction, OnboardingStepRecord, StepStatus, to_document
from services.account_store import account_store
from services.branch_service import branch_service
from services.clock import system_clock
from services.pg_service import pg_service
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)


def onboarding_snapshot(account: AdminAccount) -> Dict[str, Any]:
    return {
        "onboarding": account.onboarding.model_dump(mode="json"),
        "current_onboarding_step": account.onboarding.current_onboarding_step.value,
        "is_complete": account.onboarding.is_complete,
        "pg_id": account.pg_id,
        "default_branch_id": account.default_branch_id,
        "pg_configured": account.pg_configured,
    }


class OnboardingService:
    def __init__(self, accounts=None, pgs=None, branches=None, clock=None):
        self.accounts = accounts if accounts is not None else account_store
        self.pgs = pgs if pgs is not None else pg_service
        self.branches = branches if branches is not None else branch_service
        self.clock = clock if clock is not None else system_clock

    def _require_pg(self, account: AdminAccount) -> str:
        if not account.pg_id:
            raise ConflictError("No PG associated with account", {"account_id": account.account_id})
        return account.pg_id

    async def _complete_step(
        self,
        account: AdminAccount,
        step: str,
        linked_entity_id: str,
        extra_fields: Dict[str, Any],
    ) -> ServiceResult:
        record = OnboardingStepRecord(
            status=StepStatus.COMPLETED,
            linked_entity_id=linked_entity_id,
            completed_at=self.clock.now(),
        )
        onboarding = account.onboarding.model_copy(update={step: record})
        written = await self.accounts.update_account(
            account.account_id,
            {**extra_fields, "onboarding": to_document(onboarding)},
        )
        if not written:
            raise NotFoundError("Account not found", {"account_id": account.account_id, "step": step})
        logger.info(
            "ONBOARDING_STEP_COMPLETED account_id=%s step=%s next=%s",
            account.account_id, step, onboarding.current_onboarding_step.value,
        )
        await create_audit_log(
            action=AuditAction.ONBOARDING_STEP_COMPLETED,
            actor_id=account.account_id,
            account_id=account.account_id,
            resource_type="onboarding",
            resource_id=linked_entity_id,
            metadata={"step": step, "current_onboarding_step": onboarding.current_onboarding_step.value},
        )
        updated = await self.accounts.require_account(account.account_id)
        return ServiceResult.ok(f"{step.replace('_', ' ').capitalize()} completed", onboarding_snapshot(updated))

    @service_boundary("progress_pg_creation")
    async def progress_pg_creation(self, account_id: str, pg_data: Dict[str, Any]) -> ServiceResult:
        account = await self.accounts.require_account(account_id)
        pg = await self.pgs.create_pg(account_id, pg_data)
        return await self._complete_step(account, "pg_creation", pg.pg_id, {"pg_id": pg.pg_id})

    @service_boundary("progress_branch_setup")
    async def progress_branch_setup(self, account_id: str, branch_data: Dict[str, Any]) -> ServiceResult:
        account = await self.accounts.require_account(account_id)
        pg_id = self._require_pg(account)
        branch = await self.branches.create_branch(account_id, pg_id, branch_data, is_default=True)
        return await self._complete_step(
            account, "branch_setup", branch.branch_id, {"default_branch_id": branch.branch_id}
        )

    @service_boundary("progress_pg_configuration")
    async def progress_pg_configuration(self, account_id: str, sharing_types: List[Dict[str, Any]]) -> ServiceResult:
        account = await self.accounts.require_account(account_id)
        pg_id = self._require_pg(account)
        await self.pgs.configure_sharing_types(pg_id, sharing_types)
        return await self._complete_step(account, "pg_configuration", pg_id, {"pg_configured": True})

    @service_boundary("get_onboarding_status")
    async def get_status(self, account_id: str) -> ServiceResult:
        account = await self.accounts.require_account(account_id)
        return ServiceResult.ok("Onboarding status loaded", onboarding_snapshot(account))


onboarding_service = OnboardingService()
