"""Branch collaborator (branches collection)."""
import logging
from typing import Any, Dict

from database import database
from errors import ValidationError
from models import Branch, to_document

logger = logging.getLogger(__name__)


class BranchService:
    def __init__(self, db=None):
        self._db = db

    def _get_db(self):
        return self._db if self._db is not None else database.get_db()

    async def create_branch(
        self,
        account_id: str,
        pg_id: str,
        branch_data: Dict[str, Any],
        is_default: bool = False,
    ) -> Branch:
        """Create a branch under pg_id. A new default branch replaces any previous default."""
        name = (branch_data.get("name") or "").strip()
        if not name:
            raise ValidationError("Branch name is required")

        db = self._get_db()
        branch = Branch(
            pg_id=pg_id,
            account_id=account_id,
            name=name,
            address=branch_data.get("address"),
            is_default=is_default,
        )
        await db.branches.insert_one(to_document(branch))
        if is_default:
            # Demote only after the new default exists
            await db.branches.update_many(
                {"pg_id": pg_id, "is_default": True, "branch_id": {"$ne": branch.branch_id}},
                {"$set": {"is_default": False}},
            )
        logger.info("Branch created branch_id=%s pg_id=%s default=%s", branch.branch_id, pg_id, is_default)
        return branch


branch_service = BranchService()
