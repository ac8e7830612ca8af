"""Error taxonomy for the subscription core.

Services raise these internally. Every public operation converts them into a
ServiceResult at its boundary; routes turn a failed ServiceResult into an
HTTPException using status_code.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Dict, Optional

from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class SubscriptionCoreError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(SubscriptionCoreError):
    """Malformed or missing input. Never retried automatically."""
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(SubscriptionCoreError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(SubscriptionCoreError):
    """A precondition of the requested transition does not hold."""
    code = "CONFLICT"
    status_code = 409


class AuthenticationError(SubscriptionCoreError):
    code = "AUTHENTICATION_FAILED"
    status_code = 400


class TransientStoreError(SubscriptionCoreError):
    """Persistence failure or timeout. Safe to retry."""
    code = "TRANSIENT_STORE_ERROR"
    status_code = 500
    retryable = True


@dataclass
class ServiceResult:
    success: bool
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None
    status_code: int = 200
    retryable: bool = False

    @classmethod
    def ok(cls, message: str = "", data: Optional[Dict[str, Any]] = None) -> "ServiceResult":
        return cls(success=True, message=message, data=data or {})

    @classmethod
    def from_error(cls, err: SubscriptionCoreError) -> "ServiceResult":
        return cls(
            success=False,
            message=err.message,
            data=dict(err.details),
            error_code=err.code,
            status_code=err.status_code,
            retryable=err.retryable,
        )


def service_boundary(operation: str):
    """Decorator for public async operations: domain errors become a failed ServiceResult.

    PyMongoError is reported as TransientStoreError. Anything else propagates.
    """
    def decorator(fn):
        @wraps(fn)
        async def wrapper(*args, **kwargs) -> ServiceResult:
            try:
                return await fn(*args, **kwargs)
            except SubscriptionCoreError as e:
                logger.warning("%s failed code=%s message=%s", operation, e.code, e.message)
                return ServiceResult.from_error(e)
            except PyMongoError as e:
                logger.error("%s store failure: %s", operation, e)
                return ServiceResult.from_error(TransientStoreError(f"Store failure during {operation}"))
        return wrapper
    return decorator
