from typing import Optional
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import require_permissions
from ..db import get_db
from ..schemas.notifications import AuditLogResponse
from ..services.audit import get_audit_logs, verify_audit_log


router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("")
def list_audit_logs(
    entity_type: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    actor_id: Optional[uuid.UUID] = None,
    action: Optional[str] = None,
    page: int = 1,
    limit: int = 100,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("audit:read")),
):
    """
    Audit trail with filters and pagination. Each entry reports whether its
    integrity hash still matches.
    """
    limit = min(max(1, limit), 500)
    page = max(1, page)
    items, total = get_audit_logs(
        db, entity_type=entity_type, entity_id=entity_id, actor_id=actor_id, action=action,
        limit=limit, offset=(page - 1) * limit,
    )
    return {
        "items": [
            {**AuditLogResponse.model_validate(log).model_dump(mode="json"), "verified": verify_audit_log(log)}
            for log in items
        ],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }
