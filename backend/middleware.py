from fastapi import Request, HTTPException, status
from typing import Optional
import logging
from auth import check_rbac, decode_access_token
from errors import ServiceResult
from models import UserRole

logger = logging.getLogger(__name__)

async def get_current_user(request: Request) -> Optional[dict]:
    """Account claims from the bearer token, or None."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None

    token = auth_header.split(" ", 1)[1].strip()
    return decode_access_token(token)

async def require_auth(request: Request) -> dict:
    """Require a valid account token."""
    user = await get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return user

async def require_role(request: Request, required_role: UserRole) -> dict:
    user = await require_auth(request)
    if not check_rbac(user.get("role"), required_role):
        logger.warning("Role check failed account_id=%s role=%s required=%s", user.get("account_id"), user.get("role"), required_role.value)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions"
        )
    return user

async def require_superadmin(request: Request) -> dict:
    """Platform operators only (manual extensions, run-now jobs)."""
    return await require_role(request, UserRole.ROLE_SUPERADMIN)

def result_response(result: ServiceResult) -> dict:
    """Unwrap a ServiceResult for a route: failures become HTTPException with the error's status."""
    if not result.success:
        raise HTTPException(
            status_code=result.status_code,
            detail={"message": result.message, "error_code": result.error_code, **result.data},
        )
    return {"success": True, "message": result.message, **result.data}
