"""
Audit logging service.
Append-only audit log with integrity hashing.
"""
import hashlib
import json
import uuid
from typing import Optional, Dict, Any, Tuple

from sqlalchemy.orm import Session

from ..models.models import AuditLog, User, utcnow
from ..config import settings
from .permissions import primary_role


def canonical_json(data: Dict[str, Any]) -> str:
    """Serialise ``data`` with None values removed and keys sorted."""
    cleaned = {k: v for k, v in data.items() if v is not None}
    return json.dumps(cleaned, sort_keys=True, default=str, separators=(",", ":"))


def sha256_hex(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _audit_payload(log: AuditLog) -> Dict[str, Any]:
    return {
        "entity_type": log.entity_type,
        "entity_id": str(log.entity_id),
        "action": log.action,
        "actor_id": str(log.actor_id) if log.actor_id else None,
        "actor_role": log.actor_role,
        "source": log.source,
        "timestamp_utc": log.timestamp_utc.isoformat(),
        "changes": log.changes_json,
        "context": log.context,
    }


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id,
    action: str,
    actor_id=None,
    actor_role: Optional[str] = None,
    source: Optional[str] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None
) -> AuditLog:
    """
    Create an append-only audit log entry.

    The entry joins the caller's transaction; committing is the caller's job.

    Args:
        db: Database session
        entity_type: Type of entity (user|project|plot|timesheet|qualification|...)
        entity_id: Entity ID
        action: Action performed (CREATE|UPDATE|APPROVE|REJECT|SOFT_DELETE|RESTORE|...)
        actor_id: User ID who performed the action
        actor_role: Role of the actor
        source: Source of the action (app|system|api)
        changes_json: Before/after diff
        context: Additional context
        integrity_secret: Secret for integrity hash (defaults to JWT_SECRET)

    Returns:
        Created AuditLog object
    """
    audit_log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        source=source or "system",
        changes_json=changes_json,
        timestamp_utc=utcnow(),
        context=context,
    )

    secret = settings.jwt_secret if integrity_secret is None else integrity_secret
    if secret:
        audit_log.integrity_hash = sha256_hex(f"{canonical_json(_audit_payload(audit_log))}:{secret}")

    db.add(audit_log)
    db.flush()
    return audit_log


def record_action(
    db: Session,
    actor: Optional[User],
    entity_type: str,
    entity_id,
    action: str,
    changes: Optional[Dict] = None,
    context: Optional[Dict] = None,
) -> AuditLog:
    """Shorthand for entries made on behalf of a signed-in user."""
    return create_audit_log(
        db,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor.id if actor else None,
        actor_role=primary_role(actor) if actor else "system",
        source="app" if actor else "system",
        changes_json=changes,
        context=context,
    )


def verify_audit_log(log: AuditLog, integrity_secret: Optional[str] = None) -> bool:
    """Recompute the integrity hash of a stored entry."""
    secret = settings.jwt_secret if integrity_secret is None else integrity_secret
    expected = sha256_hex(f"{canonical_json(_audit_payload(log))}:{secret}")
    return log.integrity_hash == expected


def get_audit_logs(
    db: Session,
    entity_type: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    actor_id: Optional[uuid.UUID] = None,
    action: Optional[str] = None,
    limit: int = 100,
    offset: int = 0
) -> Tuple[list, int]:
    """
    Get audit logs with optional filtering.

    Returns:
        (page of AuditLog objects, total matching)
    """
    query = db.query(AuditLog)

    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)
    if actor_id:
        query = query.filter(AuditLog.actor_id == actor_id)
    if action:
        query = query.filter(AuditLog.action == action)

    total = query.count()
    query = query.order_by(AuditLog.timestamp_utc.desc())
    return query.limit(limit).offset(offset).all(), total


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    for key in set(before.keys()) | set(after.keys()):
        before_val = before.get(key)
        after_val = after.get(key)
        if before_val != after_val:
            diff[key] = {"before": before_val, "after": after_val}
    return diff
