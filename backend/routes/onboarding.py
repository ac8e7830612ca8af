"""Onboarding routes for the PG admin setup wizard.

GET  /api/onboarding/status         - current step and step records (read only)
POST /api/onboarding/pg             - step 1: create the PG
POST /api/onboarding/branch         - step 2: create the default branch
POST /api/onboarding/configuration  - step 3: configure sharing types
"""
from fastapi import APIRouter, Request

from middleware import require_auth, result_response
from models import BranchCreateRequest, PGConfigurationRequest, PGCreateRequest
from services.onboarding import onboarding_service

router = APIRouter(prefix="/api/onboarding", tags=["onboarding"])


@router.get("/status")
async def get_onboarding_status(request: Request):
    user = await require_auth(request)
    return result_response(await onboarding_service.get_status(user["account_id"]))


@router.post("/pg")
async def create_pg(request: Request, body: PGCreateRequest):
    user = await require_auth(request)
    result = await onboarding_service.progress_pg_creation(user["account_id"], body.model_dump())
    return result_response(result)


@router.post("/branch")
async def create_branch(request: Request, body: BranchCreateRequest):
    user = await require_auth(request)
    result = await onboarding_service.progress_branch_setup(user["account_id"], body.model_dump())
    return result_response(result)


@router.post("/configuration")
async def configure_pg(request: Request, body: PGConfigurationRequest):
    user = await require_auth(request)
    result = await onboarding_service.progress_pg_configuration(user["account_id"], body.sharing_types)
    return result_response(result)
