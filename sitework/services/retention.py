"""
GDPR retention: rules, per-record countdowns, archive/delete processing,
legal holds and data-subject deletion requests.
"""
import uuid
from datetime import date, timedelta
from typing import List, Optional

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import AuthorizationError, ConflictError, InvalidTransition, NotFoundError, ValidationError
from ..models.models import (
    ArchiveLogEntry,
    DeletionRequest,
    RetentionRecord,
    RetentionRule,
    User,
    utcnow,
)
from .audit import record_action
from .notifications import notify
from .time_rules import add_months, days_until

log = structlog.get_logger(__name__)

UPCOMING_WINDOW_DAYS = 30

DEFAULT_RULES = [
    {
        "data_type": "RAMS Signatures",
        "description": "Risk Assessment & Method Statement sign-offs",
        "retention_period": 12, "unit": "years",
        "auto_archive": True, "auto_delete": False, "requires_approval": True,
        "legal_basis": "Construction Industry Standards & Insurance",
    },
    {
        "data_type": "Training Records",
        "description": "Qualifications, certifications, and competency records",
        "retention_period": 2, "unit": "years",
        "auto_archive": True, "auto_delete": True, "requires_approval": False,
        "legal_basis": "Employment Records",
    },
    {
        "data_type": "Timesheets",
        "description": "Employee timesheet and payroll data",
        "retention_period": 6, "unit": "years",
        "auto_archive": True, "auto_delete": True, "requires_approval": False,
        "legal_basis": "HMRC Requirements",
    },
    {
        "data_type": "Personal Data",
        "description": "Employee contact details, emergency contacts",
        "retention_period": 2, "unit": "years",
        "auto_archive": True, "auto_delete": True, "requires_approval": False,
        "legal_basis": "GDPR - Employment Necessity",
    },
    {
        "data_type": "Site Notices",
        "description": "Safety notices and compliance communications",
        "retention_period": 7, "unit": "years",
        "auto_archive": True, "auto_delete": False, "requires_approval": True,
        "legal_basis": "Health & Safety Records",
    },
]


# =====================
# Rules
# =====================

def ensure_default_rules(db: Session) -> None:
    existing = {r.data_type for r in db.query(RetentionRule.data_type).all()}
    for rule in DEFAULT_RULES:
        if rule["data_type"] not in existing:
            db.add(RetentionRule(**rule))
    db.commit()


def policy_label(rule: RetentionRule) -> str:
    if not rule.auto_delete and rule.requires_approval:
        return "Manual Only"
    if rule.auto_delete:
        return "Auto-Delete"
    return "Archive Only"


def period_months(rule: RetentionRule) -> int:
    return rule.retention_period * 12 if rule.unit == "years" else rule.retention_period


def list_rules(db: Session) -> List[RetentionRule]:
    return db.query(RetentionRule).order_by(RetentionRule.data_type).all()


def get_rule(db: Session, data_type: str) -> RetentionRule:
    rule = db.query(RetentionRule).filter(RetentionRule.data_type == data_type).first()
    if not rule:
        raise NotFoundError("Retention rule", data_type)
    return rule


def update_rule(db: Session, actor: User, rule: RetentionRule, data: dict) -> RetentionRule:
    before = {k: getattr(rule, k) for k in data}
    if data.get("retention_period") is not None and data["retention_period"] < 1:
        raise ValidationError("Retention period must be at least 1")
    if data.get("unit") is not None and data["unit"] not in ("months", "years"):
        raise ValidationError("Unit must be months or years")
    for key, value in data.items():
        if value is not None:
            setattr(rule, key, value)
    record_action(db, actor, "retention_rule", rule.id, "UPDATE",
                  changes={k: {"before": before[k], "after": getattr(rule, k)} for k in data if data[k] is not None})
    db.commit()
    db.refresh(rule)
    return rule


# =====================
# Records
# =====================

def create_record(
    db: Session,
    data_type: str,
    entity_type: str,
    created_on: date,
    subject_user_id: Optional[uuid.UUID] = None,
    entity_id: Optional[str] = None,
    description: Optional[str] = None,
    data_size: int = 0,
    can_request_deletion: bool = True,
) -> RetentionRecord:
    """
    Start the retention countdown for a piece of data.

    The delete date is the creation date plus the rule's period; archiving is
    due twelve months earlier, but never before creation.
    """
    rule = get_rule(db, data_type)
    delete_date = add_months(created_on, period_months(rule))
    archive_date = max(created_on, add_months(delete_date, -12))
    record = RetentionRecord(
        rule_id=rule.id,
        subject_user_id=subject_user_id,
        data_type=data_type,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id else None,
        description=description,
        created_on=created_on,
        archive_date=archive_date,
        delete_date=delete_date,
        status="live",
        review_status="pending",
        can_request_deletion=can_request_deletion,
        data_size=data_size,
    )
    db.add(record)
    db.flush()
    return record


def get_record(db: Session, record_id: uuid.UUID) -> RetentionRecord:
    record = db.get(RetentionRecord, record_id)
    if not record:
        raise NotFoundError("Retention record", record_id)
    return record


def days_until_retention(record: RetentionRecord, today: date) -> int:
    return days_until(record.delete_date, today)


def record_to_dict(record: RetentionRecord, today: date) -> dict:
    return {
        "id": str(record.id),
        "data_type": record.data_type,
        "entity_type": record.entity_type,
        "entity_id": record.entity_id,
        "description": record.description,
        "subject_user_id": str(record.subject_user_id) if record.subject_user_id else None,
        "subject_name": record.subject.full_name if record.subject else None,
        "created_on": record.created_on.isoformat(),
        "archive_date": record.archive_date.isoformat() if record.archive_date else None,
        "delete_date": record.delete_date.isoformat(),
        "days_until_retention": days_until_retention(record, today),
        "status": record.status,
        "review_status": record.review_status,
        "legal_hold": record.legal_hold,
        "override_reason": record.override_reason,
        "policy": policy_label(record.rule) if record.rule else None,
        "can_request_deletion": record.can_request_deletion and not record.legal_hold,
        "data_size": record.data_size,
    }


def list_records(
    db: Session,
    status: Optional[str] = None,
    data_type: Optional[str] = None,
    legal_hold: Optional[bool] = None,
) -> List[RetentionRecord]:
    query = db.query(RetentionRecord)
    if status:
        query = query.filter(RetentionRecord.status == status)
    if data_type:
        query = query.filter(RetentionRecord.data_type == data_type)
    if legal_hold is not None:
        query = query.filter(RetentionRecord.legal_hold.is_(legal_hold))
    return query.order_by(RetentionRecord.delete_date).all()


def upcoming(db: Session, today: date) -> List[RetentionRecord]:
    """Records awaiting review whose retention date falls in the next 30 days."""
    records = list_records(db)
    return [
        r for r in records
        if r.review_status == "pending"
        and r.status != "deleted"
        and 0 < days_until_retention(r, today) <= UPCOMING_WINDOW_DAYS
    ]


def retention_stats(db: Session, today: date) -> dict:
    records = [r for r in list_records(db) if r.status != "deleted"]
    return {
        "total": len(records),
        "upcoming": len(upcoming(db, today)),
        "overdue": sum(1 for r in records if days_until_retention(r, today) < 0 and not r.legal_hold),
        "legal_hold": sum(1 for r in records if r.legal_hold or r.review_status == "overridden"),
    }


def _log_archive_action(
    db: Session,
    record: RetentionRecord,
    action: str,
    reason: Optional[str],
    approved_by: Optional[User],
) -> ArchiveLogEntry:
    entry = ArchiveLogEntry(
        record_id=record.id,
        subject_user_id=record.subject_user_id,
        data_type=record.data_type,
        action=action,
        reason=reason,
        approved_by=approved_by.full_name if approved_by else "System",
        record_count=1,
        data_size=record.data_size or 0,
    )
    db.add(entry)
    return entry


def approve_record(db: Session, actor: User, record: RetentionRecord) -> RetentionRecord:
    if record.status == "deleted":
        raise InvalidTransition("retention record", record.status, "approved")
    if record.legal_hold:
        raise ConflictError("Release the legal hold before approving deletion")
    record.review_status = "approved"
    record.approved_by = actor.id
    record.approved_at = utcnow()
    record_action(db, actor, "retention_record", record.id, "APPROVE")
    db.commit()
    db.refresh(record)
    return record


def override_record(db: Session, actor: User, record: RetentionRecord, reason: str) -> RetentionRecord:
    """Keep a record past its retention date by placing it on legal hold."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to override retention")
    if record.status == "deleted":
        raise InvalidTransition("retention record", record.status, "overridden")
    record.review_status = "overridden"
    record.legal_hold = True
    record.override_reason = reason
    record.override_requested_by = actor.id
    record.override_requested_at = utcnow()
    if record.status == "pending_deletion":
        record.status = "archived" if record.archived_at else "live"
    _log_archive_action(db, record, "legal_hold", reason, actor)
    record_action(db, actor, "retention_record", record.id, "LEGAL_HOLD", context={"reason": reason})
    db.commit()
    db.refresh(record)
    log.info("retention_override", record_id=str(record.id))
    return record


def release_hold(db: Session, actor: User, record: RetentionRecord) -> RetentionRecord:
    if not record.legal_hold:
        raise InvalidTransition("retention record", "no_hold", "released")
    record.legal_hold = False
    record.review_status = "pending"
    _log_archive_action(db, record, "restored", "Legal hold released", actor)
    record_action(db, actor, "retention_record", record.id, "RELEASE_HOLD")
    db.commit()
    db.refresh(record)
    return record


def _erase_entity(db: Session, record: RetentionRecord) -> None:
    """Anonymise the personal data a deleted record points at."""
    if record.entity_type != "user" or not record.entity_id:
        return
    try:
        user = db.get(User, uuid.UUID(record.entity_id))
    except ValueError:
        log.warning("retention_bad_entity_id", record_id=str(record.id), entity_id=record.entity_id)
        return
    if user is None:
        return
    user.first_name = "Deleted"
    user.last_name = "User"
    user.email = f"deleted-{user.id}@invalid.local"
    user.phone = None
    user.is_active = False
    user.activation_status = "inactive"
    user.deleted_at = user.deleted_at or utcnow()
    user.deletion_reason = "Retention period expired"


def _delete_record(db: Session, record: RetentionRecord, reason: str, actor: Optional[User]) -> None:
    record.status = "deleted"
    record.deleted_at = utcnow()
    _erase_entity(db, record)
    _log_archive_action(db, record, "deleted", reason, actor)


def _needs_approval(record: RetentionRecord) -> bool:
    rule = record.rule
    if record.review_status == "approved":
        return False
    if not rule.auto_delete:
        return True
    return rule.requires_approval and settings.retention_require_dpo_approval


def run_processing(db: Session, today: date, actor: Optional[User] = None) -> dict:
    """
    Archive and delete records that have reached their dates.

    Records on legal hold are left alone. Due records that still need a
    decision are queued as pending_deletion.

    Returns:
        Counts of archived, deleted and queued records
    """
    summary = {"archived": 0, "deleted": 0, "queued": 0, "skipped": 0}
    if actor is None and not settings.retention_auto_processing:
        log.info("retention_processing_disabled")
        return summary

    records = (
        db.query(RetentionRecord)
        .filter(RetentionRecord.status.in_(("live", "archived", "pending_deletion")))
        .all()
    )
    for record in records:
        if record.legal_hold:
            summary["skipped"] += 1
            continue
        if record.delete_date <= today:
            if _needs_approval(record):
                if record.status != "pending_deletion":
                    record.status = "pending_deletion"
                    summary["queued"] += 1
                continue
            _delete_record(db, record, "Retention period expired", actor)
            summary["deleted"] += 1
        elif record.status == "live" and record.rule.auto_archive and record.archive_date and record.archive_date <= today:
            record.status = "archived"
            record.archived_at = utcnow()
            _log_archive_action(db, record, "archived", "Archive date reached", actor)
            summary["archived"] += 1

    if actor is not None:
        record_action(db, actor, "retention_run", uuid.uuid4(), "PROCESS", context=summary)
    db.commit()
    log.info("retention_processed", **summary)
    return summary


def approve_deletion(db: Session, actor: User, record: RetentionRecord) -> RetentionRecord:
    """Delete a pending_deletion record now."""
    if record.status != "pending_deletion":
        raise InvalidTransition("retention record", record.status, "deleted")
    if record.legal_hold:
        raise ConflictError("Record is on legal hold")
    record.review_status = "approved"
    record.approved_by = actor.id
    record.approved_at = utcnow()
    _delete_record(db, record, "Deletion approved", actor)
    record_action(db, actor, "retention_record", record.id, "DELETE")
    db.commit()
    db.refresh(record)
    return record


def pending_actions(db: Session, today: date) -> List[dict]:
    """Archive and delete actions falling inside the configured warning windows."""
    actions = []
    for record in list_records(db):
        if record.status == "deleted" or record.legal_hold:
            continue
        to_delete = days_until(record.delete_date, today)
        to_archive = days_until(record.archive_date, today)
        if record.status == "live" and record.rule.auto_archive and to_archive is not None \
                and 0 <= to_archive <= settings.retention_archive_warning_days:
            actions.append({"record_id": str(record.id), "data_type": record.data_type, "action": "archive",
                            "due_date": record.archive_date.isoformat(), "days": to_archive,
                            "subject_name": record.subject.full_name if record.subject else None,
                            "can_override": True})
        if 0 <= to_delete <= settings.retention_delete_warning_days or record.status == "pending_deletion":
            actions.append({"record_id": str(record.id), "data_type": record.data_type, "action": "delete",
                            "due_date": record.delete_date.isoformat(), "days": to_delete,
                            "subject_name": record.subject.full_name if record.subject else None,
                            "can_override": True})
    return sorted(actions, key=lambda a: a["days"])


def archive_log(
    db: Session,
    search: Optional[str] = None,
    data_type: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 200,
) -> List[ArchiveLogEntry]:
    query = db.query(ArchiveLogEntry).outerjoin(User, User.id == ArchiveLogEntry.subject_user_id)
    if data_type:
        query = query.filter(ArchiveLogEntry.data_type == data_type)
    if action:
        query = query.filter(ArchiveLogEntry.action == action)
    if search:
        needle = f"%{search.strip()}%"
        query = query.filter(or_(
            ArchiveLogEntry.data_type.ilike(needle),
            ArchiveLogEntry.reason.ilike(needle),
            User.first_name.ilike(needle),
            User.last_name.ilike(needle),
        ))
    return query.order_by(ArchiveLogEntry.created_at.desc()).limit(limit).all()


# =====================
# Data subject access
# =====================

def my_data(db: Session, user: User) -> List[RetentionRecord]:
    return (
        db.query(RetentionRecord)
        .filter(RetentionRecord.subject_user_id == user.id, RetentionRecord.status != "deleted")
        .order_by(RetentionRecord.delete_date)
        .all()
    )


def request_deletion(db: Session, user: User, record: RetentionRecord, reason: str, today: date) -> DeletionRequest:
    """
    Ask for early deletion of one of the caller's records.

    The request is due for a decision within the review period.
    """
    if record.subject_user_id != user.id:
        raise AuthorizationError("You can only request deletion of your own data")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Please give a reason for the deletion request")
    if not record.can_request_deletion or record.legal_hold:
        raise ValidationError("This data must be kept for legal or contractual reasons")
    if record.status == "deleted":
        raise InvalidTransition("retention record", record.status, "deletion requested")
    open_request = (
        db.query(DeletionRequest.id)
        .filter(DeletionRequest.record_id == record.id, DeletionRequest.status == "pending")
        .first()
    )
    if open_request:
        raise ConflictError("A deletion request for this data is already pending")

    req = DeletionRequest(
        record_id=record.id,
        user_id=user.id,
        reason=reason,
        status="pending",
        due_by=today + timedelta(days=settings.deletion_request_review_days),
    )
    db.add(req)
    db.flush()
    record_action(db, user, "deletion_request", req.id, "CREATE", context={"record_id": str(record.id)})
    db.commit()
    db.refresh(req)
    log.info("deletion_requested", request_id=str(req.id), record_id=str(record.id))
    return req


def get_deletion_request(db: Session, request_id: uuid.UUID) -> DeletionRequest:
    req = db.get(DeletionRequest, request_id)
    if not req:
        raise NotFoundError("Deletion request", request_id)
    return req


def list_deletion_requests(db: Session, status: Optional[str] = None, user_id: Optional[uuid.UUID] = None) -> List[DeletionRequest]:
    query = db.query(DeletionRequest)
    if status:
        query = query.filter(DeletionRequest.status == status)
    if user_id:
        query = query.filter(DeletionRequest.user_id == user_id)
    return query.order_by(DeletionRequest.due_by).all()


def decide_deletion_request(
    db: Session,
    dpo: User,
    req: DeletionRequest,
    approve: bool,
    note: Optional[str] = None,
) -> DeletionRequest:
    target = "approved" if approve else "rejected"
    if req.status != "pending":
        raise InvalidTransition("deletion request", req.status, target)
    if not approve and not (note or "").strip():
        raise ValidationError("A note is required when rejecting a deletion request")
    record = req.record
    if approve and record.legal_hold:
        raise ConflictError("Record is on legal hold")

    req.status = target
    req.decided_by = dpo.id
    req.decided_at = utcnow()
    req.decision_note = note
    if approve:
        _delete_record(db, record, f"Data subject request: {req.reason}", dpo)
    subject = db.get(User, req.user_id)
    if subject is not None:
        notify(db, subject, "deletion_request_decided", {
            "subject": f"Your deletion request was {target}",
            "body": note or f"Your request to delete {record.data_type} data was {target}.",
        })
    record_action(db, dpo, "deletion_request", req.id, target.upper(), context={"note": note})
    db.commit()
    db.refresh(req)
    return req
