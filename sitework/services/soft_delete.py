"""
Soft delete / restore for rows carrying deleted_at, deleted_by and deletion_reason.
"""
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..errors import ConflictError
from ..models.models import User, utcnow
from .audit import record_action

log = structlog.get_logger(__name__)


def soft_delete(db: Session, row, entity_type: str, actor: Optional[User], reason: Optional[str] = None):
    if row.deleted_at is not None:
        raise ConflictError(f"{entity_type} is already deleted")
    row.deleted_at = utcnow()
    row.deleted_by = actor.id if actor else None
    row.deletion_reason = reason
    record_action(db, actor, entity_type, row.id, "SOFT_DELETE", context={"reason": reason})
    log.info("soft_deleted", entity_type=entity_type, entity_id=str(row.id))
    return row


def restore(db: Session, row, entity_type: str, actor: Optional[User]):
    if row.deleted_at is None:
        raise ConflictError(f"{entity_type} is not deleted")
    previous = {"deleted_at": row.deleted_at.isoformat(), "deletion_reason": row.deletion_reason}
    row.deleted_at = None
    row.deleted_by = None
    row.deletion_reason = None
    record_action(db, actor, entity_type, row.id, "RESTORE", context=previous)
    log.info("restored", entity_type=entity_type, entity_id=str(row.id))
    return row
