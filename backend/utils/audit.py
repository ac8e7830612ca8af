"""Audit trail for subscription, onboarding and gateway actions (audit_logs collection)."""
from database import database
from models import AuditLog, AuditAction, to_document
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)

def state_changes(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Fields whose value differs between two state snapshots, as {field: {"from", "to"}}."""
    return {
        key: {"from": before.get(key), "to": after.get(key)}
        for key in sorted(set(before) | set(after))
        if before.get(key) != after.get(key)
    }

async def create_audit_log(
    action: AuditAction,
    actor_id: Optional[str] = None,
    account_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    before_state: Optional[Dict[str, Any]] = None,
    after_state: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> str:
    """Record an audit entry. Returns the audit_id, or "" when the write failed.

    actor_id is the account, a superadmin, "system" (sweeps) or "gateway" (webhooks).
    With both states given, the changed fields are stored under metadata["changes"].
    """
    try:
        entry_metadata = dict(metadata or {})
        if before_state and after_state:
            changes = state_changes(before_state, after_state)
            if changes:
                entry_metadata["changes"] = changes

        audit_log = AuditLog(
            action=action,
            actor_id=actor_id,
            account_id=account_id,
            resource_type=resource_type,
            resource_id=resource_id,
            before_state=before_state,
            after_state=after_state,
            metadata=entry_metadata or None,
        )
        await database.get_db().audit_logs.insert_one(to_document(audit_log))
        logger.info("Audit log created: %s account_id=%s resource=%s/%s", action.value, account_id, resource_type, resource_id)
        return audit_log.audit_id
    except Exception as e:
        # Audit failures are logged; the audited operation has already happened
        logger.error(f"Failed to create audit log {action.value}: {e}")
        return ""

async def get_audit_logs_for_account(
    account_id: str,
    resource_type: Optional[str] = None,
    limit: int = 50
) -> List[Dict[str, Any]]:
    """Most recent audit entries for an account, newest first."""
    query: Dict[str, Any] = {"account_id": account_id}
    if resource_type:
        query["resource_type"] = resource_type
    cursor = database.get_db().audit_logs.find(query, {"_id": 0}).sort("timestamp", -1).limit(limit)
    return await cursor.to_list(length=limit)
