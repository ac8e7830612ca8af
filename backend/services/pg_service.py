"""PG collaborator: property creation and sharing-type configuration (pgs collection)."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from database import database
from errors import NotFoundError, ValidationError
from models import PG, STANDARD_SHARING_TYPES, SharingType, to_document

logger = logging.getLogger(__name__)


def validate_sharing_types(sharing_types: List[Dict[str, Any]]) -> List[SharingType]:
    """Each entry needs type, name and a cost above 0; non-standard types need is_custom."""
    if not isinstance(sharing_types, list) or not sharing_types:
        raise ValidationError("At least one sharing type is required")

    validated = []
    for index, item in enumerate(sharing_types):
        if not isinstance(item, dict):
            raise ValidationError(f"Sharing type #{index + 1} is malformed")
        sharing_type = (item.get("type") or "").strip()
        name = (item.get("name") or "").strip()
        if not sharing_type or not name or item.get("cost") is None:
            raise ValidationError(f"Sharing type #{index + 1} requires type, name and cost")
        try:
            cost = float(item["cost"])
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid cost for sharing type {sharing_type}")
        if cost <= 0:
            raise ValidationError(f"Cost for sharing type {sharing_type} must be greater than 0")
        is_custom = bool(item.get("is_custom", False))
        if not is_custom and sharing_type not in STANDARD_SHARING_TYPES:
            raise ValidationError(
                f"Invalid sharing type: {sharing_type}",
                {"allowed": list(STANDARD_SHARING_TYPES)},
            )
        validated.append(SharingType(
            type=sharing_type,
            name=name,
            cost=cost,
            is_custom=is_custom,
            description=item.get("description"),
        ))
    return validated


class PGService:
    def __init__(self, db=None):
        self._db = db

    def _get_db(self):
        return self._db if self._db is not None else database.get_db()

    async def create_pg(self, account_id: str, pg_data: Dict[str, Any]) -> PG:
        name = (pg_data.get("name") or "").strip()
        if not name:
            raise ValidationError("PG name is required")
        pg = PG(
            account_id=account_id,
            name=name,
            address=pg_data.get("address"),
            contact=pg_data.get("contact"),
        )
        await self._get_db().pgs.insert_one(to_document(pg))
        logger.info("PG created pg_id=%s account_id=%s", pg.pg_id, account_id)
        return pg

    async def configure_sharing_types(self, pg_id: str, sharing_types: List[Dict[str, Any]]) -> List[SharingType]:
        validated = validate_sharing_types(sharing_types)
        result = await self._get_db().pgs.update_one(
            {"pg_id": pg_id},
            {"$set": {
                "sharing_types": [to_document(s) for s in validated],
                "is_configured": True,
                "updated_at": datetime.now(timezone.utc),
            }},
        )
        if result.matched_count == 0:
            raise NotFoundError("PG not found", {"pg_id": pg_id})
        logger.info("PG sharing types configured pg_id=%s count=%s", pg_id, len(validated))
        return validated


pg_service = PGService()
