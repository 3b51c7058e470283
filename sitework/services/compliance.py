"""
Qualification tracking, the compliance matrix and the training matrix.
"""
import csv
import io
import uuid
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import NotFoundError, ValidationError, InvalidTransition
from ..models.models import (
    QualificationType,
    User,
    UserQualification,
    project_members,
    utcnow,
)
from .audit import record_action
from .notifications import notify
from .permissions import primary_role
from .time_rules import days_until

log = structlog.get_logger(__name__)

TRACKED_ROLES = {"operative", "supervisor"}

# Matrix status -> training matrix label
TRAINING_LABELS = {
    "valid": "approved",
    "expiring": "due-soon",
    "expired": "expired",
    "pending": "pending",
    "missing": "missing",
    "not_required": "not-required",
}

DEFAULT_QUALIFICATION_TYPES = [
    # code, name, category, validity months, required roles
    ("cscs", "CSCS Card", "qualification", 60, []),
    ("sssts", "SSSTS", "qualification", 60, ["supervisor"]),
    ("smsts", "SMSTS", "qualification", 60, ["pm"]),
    ("gas_safe", "Gas Safe", "qualification", 60, []),
    ("asbestos", "Asbestos Awareness", "qualification", 12, []),
    ("confined_space", "Confined Space", "qualification", 36, []),
    ("induction", "Site Induction", "qualification", 12, []),
    ("first_aid", "First Aid at Work", "qualification", 36, []),
    ("manual_handling", "Manual Handling", "training", 36, []),
    ("ladder_safety", "Ladder Safety", "training", 36, []),
]


def ensure_default_qualification_types(db: Session) -> None:
    for order, (code, name, category, months, roles) in enumerate(DEFAULT_QUALIFICATION_TYPES):
        if db.query(QualificationType).filter(QualificationType.code == code).first():
            continue
        db.add(QualificationType(
            code=code,
            name=name,
            category=category,
            validity_months=months,
            required_roles=roles,
            sort_order=order,
        ))
    db.flush()


def list_types(db: Session, category: Optional[str] = None) -> List[QualificationType]:
    query = db.query(QualificationType).filter(QualificationType.is_active.is_(True))
    if category:
        query = query.filter(QualificationType.category == category)
    return query.order_by(QualificationType.sort_order, QualificationType.code).all()


def applies_to(qtype: QualificationType, user: User) -> bool:
    """A type with no required roles applies to everyone."""
    roles = qtype.required_roles or []
    return not roles or primary_role(user) in roles


# =====================
# Status derivation
# =====================

def expiry_status(expires_on: Optional[date], today: date, warning_days: Optional[int] = None) -> str:
    """valid | expiring | expired for an approved record. Expiring means 1..warning_days out."""
    if warning_days is None:
        warning_days = settings.compliance_expiry_warning_days
    days = days_until(expires_on, today)
    if days is None:
        return "valid"
    if days < 0:
        return "expired"
    if 0 < days <= warning_days:
        return "expiring"
    return "valid"


def pick_record(records: Iterable[UserQualification]) -> Tuple[Optional[UserQualification], bool]:
    """
    Choose the record that decides a user's status for one qualification type.

    Returns:
        (best approved record or None, whether a pending upload exists)
    """
    approved = None
    has_pending = False
    for rec in records:
        if rec.approval_status == "pending":
            has_pending = True
        elif rec.approval_status == "approved":
            if approved is None or _expiry_key(rec) > _expiry_key(approved):
                approved = rec
    return approved, has_pending


def _expiry_key(rec: UserQualification) -> date:
    return rec.expires_on or date.max


def qualification_status(
    records: Iterable[UserQualification],
    applies: bool,
    today: date,
    warning_days: Optional[int] = None,
) -> Tuple[str, Optional[UserQualification]]:
    approved, has_pending = pick_record(records)
    if approved is not None:
        status = expiry_status(approved.expires_on, today, warning_days)
        if status == "expired" and has_pending:
            return "pending", approved
        return status, approved
    if has_pending:
        return "pending", None
    return ("missing" if applies else "not_required"), None


def personal_badge(record: UserQualification, today: date) -> str:
    """Badge shown on an operative's own qualification card."""
    days = days_until(record.expires_on, today)
    if record.approval_status == "rejected":
        return "rejected"
    if record.approval_status == "expired" or (days is not None and days < 0):
        return "expired"
    if record.approval_status == "pending":
        return "pending"
    if days is not None and 0 < days <= settings.qualification_badge_warning_days:
        return "expiring"
    return "approved"


def compliance_percentage(statuses: Iterable[str]) -> int:
    """Share of applicable qualifications that are in date, 100 when nothing applies."""
    applicable = [s for s in statuses if s != "not_required"]
    if not applicable:
        return 100
    in_date = sum(1 for s in applicable if s in ("valid", "expiring"))
    return round(in_date * 100 / len(applicable))


# =====================
# Matrix
# =====================

def _tracked_users(db: Session, project_id: Optional[uuid.UUID], roles: Optional[Iterable[str]]) -> List[User]:
    query = db.query(User).filter(User.deleted_at.is_(None), User.is_active.is_(True))
    if project_id:
        member_ids = db.query(project_members.c.user_id).filter(project_members.c.project_id == project_id)
        query = query.filter(or_(User.current_project_id == project_id, User.id.in_(member_ids)))
    wanted = set(roles) if roles else TRACKED_ROLES
    return [u for u in query.order_by(User.last_name, User.first_name).all() if primary_role(u) in wanted]


def _records_by_user_type(db: Session, user_ids: List[uuid.UUID]) -> Dict[Tuple[uuid.UUID, uuid.UUID], List[UserQualification]]:
    grouped: Dict[Tuple[uuid.UUID, uuid.UUID], List[UserQualification]] = {}
    if not user_ids:
        return grouped
    rows = db.query(UserQualification).filter(UserQualification.user_id.in_(user_ids)).all()
    for rec in rows:
        grouped.setdefault((rec.user_id, rec.qualification_type_id), []).append(rec)
    return grouped


def build_matrix(
    db: Session,
    today: date,
    category: str = "qualification",
    project_id: Optional[uuid.UUID] = None,
    roles: Optional[Iterable[str]] = None,
) -> Tuple[List[QualificationType], List[dict]]:
    """
    One row per tracked user with a cell per qualification type.

    Returns:
        (column types, rows)
    """
    types = list_types(db, category)
    users = _tracked_users(db, project_id, roles)
    grouped = _records_by_user_type(db, [u.id for u in users])

    rows = []
    for user in users:
        cells = {}
        for qtype in types:
            status, record = qualification_status(
                grouped.get((user.id, qtype.id), []), applies_to(qtype, user), today
            )
            cells[qtype.code] = {
                "status": status,
                "expiry_date": record.expires_on.isoformat() if record and record.expires_on else None,
                "days_until_expiry": days_until(record.expires_on, today) if record else None,
                "card_number": record.card_number if record else None,
            }
        statuses = [c["status"] for c in cells.values()]
        overall = compliance_percentage(statuses)
        rows.append({
            "user_id": str(user.id),
            "name": user.full_name,
            "email": user.email,
            "role": primary_role(user),
            "project_id": str(user.current_project_id) if user.current_project_id else None,
            "project": user.current_project.name if user.current_project else None,
            "qualifications": cells,
            "overall_compliance": overall,
            "is_compliant": overall == 100,
            "has_expiring": "expiring" in statuses,
            "has_expired": "expired" in statuses,
        })
    return types, rows


def filter_matrix(
    rows: List[dict],
    search: Optional[str] = None,
    compliance: Optional[str] = None,
    expiry: Optional[str] = None,
) -> List[dict]:
    """
    Args:
        rows: Output of build_matrix
        search: Case-insensitive match on name or email
        compliance: "compliant" | "non-compliant"
        expiry: "expiring-soon" | "expired"
    """
    result = rows
    if search:
        needle = search.strip().lower()
        result = [r for r in result if needle in r["name"].lower() or needle in r["email"].lower()]
    if compliance == "compliant":
        result = [r for r in result if r["is_compliant"]]
    elif compliance == "non-compliant":
        result = [r for r in result if not r["is_compliant"]]
    if expiry == "expiring-soon":
        result = [r for r in result if r["has_expiring"]]
    elif expiry == "expired":
        result = [r for r in result if r["has_expired"]]
    return result


def matrix_stats(rows: List[dict]) -> dict:
    compliant = sum(1 for r in rows if r["is_compliant"])
    return {
        "total": len(rows),
        "compliant": compliant,
        "non_compliant": len(rows) - compliant,
        "expiring_soon": sum(1 for r in rows if r["has_expiring"]),
    }


def matrix_csv(types: List[QualificationType], rows: List[dict]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(["Name", "Email", "Role", "Project"] + [t.name for t in types] + ["Overall Compliance %"])
    for r in rows:
        cells = []
        for t in types:
            cell = r["qualifications"][t.code]
            cells.append(f"{cell['status']} ({cell['expiry_date']})" if cell["expiry_date"] else cell["status"])
        writer.writerow([r["name"], r["email"], r["role"], r["project"] or ""] + cells + [r["overall_compliance"]])
    return buf.getvalue()


def training_matrix(
    db: Session,
    today: date,
    project_id: Optional[uuid.UUID] = None,
    search: Optional[str] = None,
    status: Optional[str] = None,
    training_type: Optional[str] = None,
) -> dict:
    """Training view: every active type, statuses relabelled, plus per-type completion."""
    types = list_types(db)
    if training_type:
        types = [t for t in types if t.code == training_type]
    users = _tracked_users(db, project_id, None)
    grouped = _records_by_user_type(db, [u.id for u in users])

    rows = []
    summary = {t.code: {"name": t.name, "required": 0, "completed": 0, "due_soon": 0, "expired": 0} for t in types}
    for user in users:
        cells = {}
        for t in types:
            raw, record = qualification_status(grouped.get((user.id, t.id), []), applies_to(t, user), today)
            label = TRAINING_LABELS[raw]
            cells[t.code] = {
                "status": label,
                "expiry_date": record.expires_on.isoformat() if record and record.expires_on else None,
            }
            if label != "not-required":
                summary[t.code]["required"] += 1
            if label in ("approved", "due-soon"):
                summary[t.code]["completed"] += 1
            if label == "due-soon":
                summary[t.code]["due_soon"] += 1
            if label == "expired":
                summary[t.code]["expired"] += 1
        rows.append({"user_id": str(user.id), "name": user.full_name, "role": primary_role(user), "training": cells})

    if search:
        needle = search.strip().lower()
        rows = [r for r in rows if needle in r["name"].lower()]
    if status:
        rows = [r for r in rows if any(c["status"] == status for c in r["training"].values())]

    for item in summary.values():
        item["completion_rate"] = round(item["completed"] * 100 / item["required"]) if item["required"] else 100
    return {"types": [{"code": t.code, "name": t.name} for t in types], "rows": rows, "summary": summary}


def send_expiry_reminders(db: Session, today: date, actor: Optional[User], user_ids: Optional[List[str]] = None) -> int:
    """Notify each tracked user about their expiring or expired qualifications."""
    types, rows = build_matrix(db, today)
    names = {t.code: t.name for t in types}
    if user_ids:
        wanted = {str(u) for u in user_ids}
        rows = [r for r in rows if r["user_id"] in wanted]

    sent = 0
    for row in rows:
        user = db.get(User, uuid.UUID(row["user_id"]))
        for code, cell in row["qualifications"].items():
            if cell["status"] not in ("expiring", "expired"):
                continue
            if cell["status"] == "expired":
                subject = f"{names[code]} has expired"
                body = f"Hi {user.first_name},\n\nYour {names[code]} expired on {cell['expiry_date']}. Please upload a renewed certificate before your next shift."
            else:
                subject = f"{names[code]} expires in {cell['days_until_expiry']} days"
                body = f"Hi {user.first_name},\n\nYour {names[code]} expires on {cell['expiry_date']}. Please arrange renewal."
            notify(
                db,
                user,
                f"qualification_{cell['status']}",
                {"qualification": code, "expiry_date": cell["expiry_date"], "subject": subject, "body": body},
                channels=("app", "email"),
            )
            sent += 1
    record_action(db, actor, "compliance", uuid.uuid4(), "SEND_REMINDERS", context={"sent": sent})
    db.commit()
    log.info("qualification_reminders_sent", count=sent)
    return sent


# =====================
# Personal qualifications
# =====================

def get_type(db: Session, code: str) -> QualificationType:
    qtype = db.query(QualificationType).filter(QualificationType.code == code).first()
    if not qtype:
        raise NotFoundError("Qualification type", code)
    return qtype


def add_qualification(
    db: Session,
    user: User,
    type_code: str,
    card_number: Optional[str],
    issued_on: Optional[date],
    expires_on: Optional[date],
    file_key: Optional[str] = None,
) -> UserQualification:
    qtype = get_type(db, type_code)
    if issued_on and expires_on and expires_on <= issued_on:
        raise ValidationError("Expiry date must be after issue date")
    rec = UserQualification(
        user_id=user.id,
        qualification_type_id=qtype.id,
        card_number=card_number,
        issued_on=issued_on,
        expires_on=expires_on,
        file_key=file_key,
        approval_status="pending",
    )
    db.add(rec)
    db.flush()
    record_action(db, user, "qualification", rec.id, "CREATE", context={"type": type_code})
    db.commit()
    db.refresh(rec)
    return rec


def review_qualification(
    db: Session,
    reviewer: User,
    qualification_id: uuid.UUID,
    approve: bool,
    reason: Optional[str] = None,
) -> UserQualification:
    rec = db.get(UserQualification, qualification_id)
    if not rec:
        raise NotFoundError("Qualification", qualification_id)
    target = "approved" if approve else "rejected"
    if rec.approval_status != "pending":
        raise InvalidTransition("qualification", rec.approval_status, target)
    if not approve and not (reason or "").strip():
        raise ValidationError("A rejection reason is required")
    rec.approval_status = target
    rec.reviewed_by = reviewer.id
    rec.reviewed_at = utcnow()
    rec.rejection_reason = None if approve else reason.strip()
    record_action(db, reviewer, "qualification", rec.id, "APPROVE" if approve else "REJECT", context={"reason": reason})
    db.commit()
    db.refresh(rec)
    return rec


def qualification_to_dict(rec: UserQualification, today: date) -> dict:
    return {
        "id": str(rec.id),
        "type": rec.qualification_type.code,
        "name": rec.qualification_type.name,
        "card_number": rec.card_number,
        "issued_on": rec.issued_on.isoformat() if rec.issued_on else None,
        "expiry_date": rec.expires_on.isoformat() if rec.expires_on else None,
        "days_until_expiry": days_until(rec.expires_on, today),
        "approval_status": rec.approval_status,
        "badge": personal_badge(rec, today),
        "rejection_reason": rec.rejection_reason,
    }


def my_qualifications(db: Session, user: User, today: date) -> dict:
    records = (
        db.query(UserQualification)
        .filter(UserQualification.user_id == user.id)
        .order_by(UserQualification.created_at.desc())
        .all()
    )
    items = [qualification_to_dict(r, today) for r in records]
    notice = settings.qualification_notice_days
    expiring = [
        i for i in items
        if i["approval_status"] == "approved" and i["days_until_expiry"] is not None and 0 < i["days_until_expiry"] <= notice
    ]
    held = {r.qualification_type_id for r in records if r.approval_status in ("approved", "pending")}
    missing = [
        {"type": t.code, "name": t.name}
        for t in list_types(db)
        if applies_to(t, user) and t.id not in held
    ]
    return {"items": items, "expiring_soon": expiring, "missing": missing}


def pending_reviews(db: Session, today: date) -> List[dict]:
    rows = (
        db.query(UserQualification)
        .filter(UserQualification.approval_status == "pending")
        .order_by(UserQualification.created_at)
        .all()
    )
    out = []
    for r in rows:
        item = qualification_to_dict(r, today)
        item["user_id"] = str(r.user_id)
        item["user_name"] = r.user.full_name if r.user else None
        out.append(item)
    return out
