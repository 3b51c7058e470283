"""
Weekly timesheets: entry editing, submission and supervisor approval.
"""
import uuid
from datetime import date
from typing import List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from ..models.models import (
    PieceworkLine,
    Plot,
    Project,
    Timesheet,
    TimesheetEntry,
    User,
    utcnow,
)
from .audit import record_action
from .permissions import is_supervisor
from .time_rules import week_start

log = structlog.get_logger(__name__)

EDITABLE_STATUSES = {"draft", "rejected"}


def compliance_summary(entries: List[TimesheetEntry]) -> dict:
    rams_ok = all(e.rams_completed for e in entries)
    cscs_ok = all(e.cscs_valid for e in entries)
    if rams_ok and cscs_ok:
        text = "All Compliant"
    elif not rams_ok and not cscs_ok:
        text = "RAMS & CSCS Issues"
    elif not rams_ok:
        text = "RAMS Missing"
    else:
        text = "CSCS Invalid"
    return {"rams": rams_ok, "cscs": cscs_ok, "is_compliant": rams_ok and cscs_ok, "text": text}


def weekly_totals(entries: List[TimesheetEntry], day_rate: float, hourly_rate: float) -> dict:
    """
    Gross pay for a week.

    Full days pay the day rate, partial days pay hours at the hourly rate and
    piecework lines add units x rate.
    """
    full_days = sum(1 for e in entries if e.is_full_day)
    partial_hours = sum((e.hours or 0.0) for e in entries if not e.is_full_day)
    lines = [line for e in entries for line in e.piecework]
    piecework_units = sum(line.units for line in lines)
    piecework_total = round(sum(line.subtotal for line in lines), 2)
    day_hours_total = round(full_days * day_rate + partial_hours * hourly_rate, 2)
    return {
        "days_worked": full_days,
        "partial_hours": round(partial_hours, 2),
        "piecework_units": piecework_units,
        "day_rate": day_rate,
        "hourly_rate": hourly_rate,
        "subtotal_day_hours": day_hours_total,
        "piecework_total": piecework_total,
        "gross_total": round(day_hours_total + piecework_total, 2),
    }


def get_timesheet(db: Session, timesheet_id: uuid.UUID) -> Timesheet:
    ts = db.get(Timesheet, timesheet_id)
    if not ts:
        raise NotFoundError("Timesheet", timesheet_id)
    return ts


def _check_owner(ts: Timesheet, user: User) -> None:
    if ts.user_id != user.id:
        raise AuthorizationError("Only the owner can edit this timesheet")


def _check_editable(ts: Timesheet) -> None:
    if ts.status not in EDITABLE_STATUSES:
        raise InvalidTransition("timesheet", ts.status, "draft")


def _reopen_if_rejected(ts: Timesheet) -> None:
    if ts.status == "rejected":
        ts.status = "draft"
        ts.rejected_at = None
        ts.rejection_reason = None


def create_timesheet(db: Session, user: User, project_id: uuid.UUID, week_ending: date, notes: Optional[str] = None) -> Timesheet:
    if week_ending.weekday() != 6:
        raise ValidationError("Week ending must be a Sunday")
    if not db.get(Project, project_id):
        raise NotFoundError("Project", project_id)
    ts = Timesheet(user_id=user.id, project_id=project_id, week_ending=week_ending, notes=notes)
    db.add(ts)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError("A timesheet for this project and week already exists")
    record_action(db, user, "timesheet", ts.id, "CREATE", context={"week_ending": week_ending.isoformat()})
    db.commit()
    db.refresh(ts)
    return ts


def _validate_entry(ts: Timesheet, db: Session, data: dict) -> None:
    work_date: date = data["work_date"]
    if not (week_start(ts.week_ending) <= work_date <= ts.week_ending):
        raise ValidationError("Work date falls outside the timesheet week")
    if data.get("is_full_day", True):
        if data.get("hours"):
            raise ValidationError("Hours are only recorded for partial days")
    else:
        hours = data.get("hours")
        if hours is None or not (0 < hours < 24):
            raise ValidationError("Partial days need between 0 and 24 hours")
    plot_id = data.get("plot_id")
    if plot_id:
        plot = db.get(Plot, plot_id)
        if not plot or plot.project_id != ts.project_id:
            raise ValidationError("Plot does not belong to the timesheet project")
    for line in data.get("piecework") or []:
        if line["units"] <= 0:
            raise ValidationError("Piecework units must be positive")
        if line["rate"] < 0:
            raise ValidationError("Piecework rate cannot be negative")


def _check_one_full_day(ts: Timesheet, work_date: date, is_full_day: bool, ignore_id: Optional[uuid.UUID] = None) -> None:
    if not is_full_day:
        return
    for e in ts.entries:
        if e.id != ignore_id and e.work_date == work_date and e.is_full_day:
            raise ConflictError(f"{work_date.isoformat()} already has a full day entry")


def add_entry(db: Session, user: User, ts: Timesheet, data: dict) -> TimesheetEntry:
    _check_owner(ts, user)
    _check_editable(ts)
    _validate_entry(ts, db, data)
    _check_one_full_day(ts, data["work_date"], data.get("is_full_day", True))

    entry = TimesheetEntry(
        work_date=data["work_date"],
        plot_id=data.get("plot_id"),
        work_type=data.get("work_type"),
        is_full_day=data.get("is_full_day", True),
        hours=None if data.get("is_full_day", True) else data.get("hours"),
        notes=data.get("notes"),
        rams_completed=data.get("rams_completed", False),
        cscs_valid=data.get("cscs_valid", False),
    )
    entry.piecework = [PieceworkLine(work_item=p["work_item"], units=p["units"], rate=p["rate"]) for p in data.get("piecework") or []]
    ts.entries.append(entry)
    _reopen_if_rejected(ts)
    db.commit()
    db.refresh(entry)
    return entry


def update_entry(db: Session, user: User, ts: Timesheet, entry_id: uuid.UUID, data: dict) -> TimesheetEntry:
    _check_owner(ts, user)
    _check_editable(ts)
    entry = next((e for e in ts.entries if e.id == entry_id), None)
    if entry is None:
        raise NotFoundError("Timesheet entry", entry_id)
    merged = {
        "work_date": entry.work_date,
        "plot_id": entry.plot_id,
        "work_type": entry.work_type,
        "is_full_day": entry.is_full_day,
        "hours": entry.hours,
        "notes": entry.notes,
        "rams_completed": entry.rams_completed,
        "cscs_valid": entry.cscs_valid,
    }
    merged.update({k: v for k, v in data.items() if k != "piecework"})
    if merged["is_full_day"] and "hours" not in data:
        merged["hours"] = None
    if "piecework" in data and data["piecework"] is not None:
        merged["piecework"] = data["piecework"]
    _validate_entry(ts, db, merged)
    _check_one_full_day(ts, merged["work_date"], merged["is_full_day"], ignore_id=entry.id)

    for key in ("work_date", "plot_id", "work_type", "is_full_day", "hours", "notes", "rams_completed", "cscs_valid"):
        setattr(entry, key, merged[key])
    if entry.is_full_day:
        entry.hours = None
    if "piecework" in merged:
        entry.piecework = [PieceworkLine(work_item=p["work_item"], units=p["units"], rate=p["rate"]) for p in merged["piecework"]]
    _reopen_if_rejected(ts)
    db.commit()
    db.refresh(entry)
    return entry


def delete_entry(db: Session, user: User, ts: Timesheet, entry_id: uuid.UUID) -> None:
    _check_owner(ts, user)
    _check_editable(ts)
    entry = next((e for e in ts.entries if e.id == entry_id), None)
    if entry is None:
        raise NotFoundError("Timesheet entry", entry_id)
    ts.entries.remove(entry)
    _reopen_if_rejected(ts)
    db.commit()


def submit_timesheet(db: Session, user: User, ts: Timesheet) -> Timesheet:
    _check_owner(ts, user)
    if ts.status not in EDITABLE_STATUSES:
        raise InvalidTransition("timesheet", ts.status, "submitted")
    if not ts.entries:
        raise ValidationError("Add at least one day before submitting")
    ts.status = "submitted"
    ts.submitted_at = utcnow()
    ts.rejection_reason = None
    record_action(db, user, "timesheet", ts.id, "SUBMIT")
    db.commit()
    db.refresh(ts)
    log.info("timesheet_submitted", timesheet_id=str(ts.id), user_id=str(user.id))
    return ts


def _check_approver(ts: Timesheet, approver: User) -> None:
    if not is_supervisor(approver):
        raise AuthorizationError("Only supervisors can review timesheets")
    if ts.user_id == approver.id:
        raise AuthorizationError("You cannot review your own timesheet")


def approve_timesheet(db: Session, approver: User, ts: Timesheet):
    """Approve a submitted timesheet and raise its payslip."""
    from .payroll import create_payslip

    _check_approver(ts, approver)
    if ts.status != "submitted":
        raise InvalidTransition("timesheet", ts.status, "approved")
    ts.status = "approved"
    ts.approved_at = utcnow()
    ts.approved_by = approver.id
    payslip = create_payslip(db, ts)
    record_action(db, approver, "timesheet", ts.id, "APPROVE", context={"gross_total": payslip.gross_total})
    db.commit()
    db.refresh(ts)
    log.info("timesheet_approved", timesheet_id=str(ts.id), approver_id=str(approver.id))
    return ts


def reject_timesheet(db: Session, approver: User, ts: Timesheet, reason: str) -> Timesheet:
    _check_approver(ts, approver)
    if ts.status != "submitted":
        raise InvalidTransition("timesheet", ts.status, "rejected")
    if not (reason or "").strip():
        raise ValidationError("A rejection reason is required")
    ts.status = "rejected"
    ts.rejected_at = utcnow()
    ts.rejection_reason = reason.strip()
    record_action(db, approver, "timesheet", ts.id, "REJECT", context={"reason": ts.rejection_reason})
    db.commit()
    db.refresh(ts)
    return ts


def list_timesheets(
    db: Session,
    user_id: Optional[uuid.UUID] = None,
    project_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    week_ending: Optional[date] = None,
) -> List[Timesheet]:
    query = db.query(Timesheet)
    if user_id:
        query = query.filter(Timesheet.user_id == user_id)
    if project_id:
        query = query.filter(Timesheet.project_id == project_id)
    if status:
        query = query.filter(Timesheet.status == status)
    if week_ending:
        query = query.filter(Timesheet.week_ending == week_ending)
    return query.order_by(Timesheet.week_ending.desc()).all()
