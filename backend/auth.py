"""Account tokens for the PG admin console (HS256 JWT via python-jose).

Tokens carry account_id and role; issuing them (login, password flows) lives
in the identity service, this module only signs and checks them.
"""
from jose import JWTError, jwt
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Union
import os
from models import UserRole

JWT_SECRET = os.getenv("JWT_SECRET", "your-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRATION_HOURS = int(os.getenv("JWT_EXPIRATION_HOURS", "24"))

ROLE_HIERARCHY = {
    UserRole.ROLE_SUPERADMIN.value: 2,
    UserRole.ROLE_ADMIN.value: 1,
}

def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign claims (account_id, role) into a JWT."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=JWT_EXPIRATION_HOURS))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)

def decode_access_token(token: str) -> Optional[Dict]:
    """Decode a JWT. None when the signature, expiry or account claims are invalid."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    if not payload.get("account_id") or payload.get("role") not in ROLE_HIERARCHY:
        return None
    return payload

def check_rbac(user_role: Optional[str], required_role: Union[UserRole, str]) -> bool:
    """Superadmin satisfies every admin check."""
    required = required_role.value if isinstance(required_role, UserRole) else required_role
    return ROLE_HIERARCHY.get(user_role, 0) >= ROLE_HIERARCHY.get(required, 0)
