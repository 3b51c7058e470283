"""
Pay rates, payslips and payroll export batches.
"""
import csv
import io
import uuid
from datetime import date
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import InvalidTransition, NotFoundError, ValidationError
from ..models.models import PayRate, PayrollExport, Payslip, Timesheet, User, utcnow
from .audit import record_action
from .permissions import primary_role
from .timesheets import weekly_totals

log = structlog.get_logger(__name__)

PAYROLL_HEADERS = [
    "Operative Name", "User ID", "Project", "Plot", "Week Ending",
    "Days Worked", "Partial Hours", "Piecework Units",
    "Day Rate (£)", "Hourly Rate (£)", "Piecework Rate (£)",
    "Subtotal (Day/Hours)", "Subtotal (Piecework)", "Gross Total",
    "Supervisor Approved By", "Approval Date", "Export Batch ID",
]

EARNED_STATUSES = ("approved", "exported", "paid")


# =====================
# Rates
# =====================

def current_rate(db: Session, user_id: uuid.UUID, on_date: date) -> Optional[PayRate]:
    return (
        db.query(PayRate)
        .filter(
            PayRate.user_id == user_id,
            PayRate.effective_from <= on_date,
            (PayRate.effective_to.is_(None)) | (PayRate.effective_to >= on_date),
        )
        .order_by(PayRate.effective_from.desc())
        .first()
    )


def resolve_rates(db: Session, user_id: uuid.UUID, on_date: date) -> Tuple[float, float]:
    """(day rate, hourly rate) in force on ``on_date``, falling back to the defaults."""
    rate = current_rate(db, user_id, on_date)
    if rate is None:
        return settings.default_day_rate, settings.default_hourly_rate
    return rate.day_rate, rate.hourly_rate


def add_rate(
    db: Session,
    actor: User,
    user: User,
    day_rate: float,
    hourly_rate: float,
    bonus_rate: float,
    effective_from: date,
) -> PayRate:
    """Close the user's open rate and start a new one."""
    if day_rate < 0 or hourly_rate < 0 or bonus_rate < 0:
        raise ValidationError("Rates cannot be negative")
    open_rate = db.query(PayRate).filter(PayRate.user_id == user.id, PayRate.effective_to.is_(None)).first()
    if open_rate:
        if effective_from <= open_rate.effective_from:
            raise ValidationError("New rate must start after the current rate")
        open_rate.effective_to = effective_from
    rate = PayRate(
        user_id=user.id,
        role=primary_role(user),
        day_rate=day_rate,
        hourly_rate=hourly_rate,
        bonus_rate=bonus_rate,
        effective_from=effective_from,
    )
    db.add(rate)
    db.flush()
    record_action(db, actor, "pay_rate", rate.id, "CREATE", context={"user_id": str(user.id), "day_rate": day_rate, "hourly_rate": hourly_rate})
    db.commit()
    db.refresh(rate)
    return rate


def list_rates(db: Session, user_id: Optional[uuid.UUID] = None) -> List[PayRate]:
    query = db.query(PayRate)
    if user_id:
        query = query.filter(PayRate.user_id == user_id)
    return query.order_by(PayRate.effective_from.desc()).all()


# =====================
# Payslips
# =====================

def create_payslip(db: Session, ts: Timesheet) -> Payslip:
    """Build the payslip for an approved timesheet. Joins the caller's transaction."""
    day_rate, hourly_rate = resolve_rates(db, ts.user_id, ts.week_ending)
    totals = weekly_totals(ts.entries, day_rate, hourly_rate)
    plots = sorted({e.plot.display_name for e in ts.entries if e.plot is not None})
    payslip = Payslip(
        user_id=ts.user_id,
        timesheet_id=ts.id,
        project_id=ts.project_id,
        week_ending=ts.week_ending,
        days_worked=totals["days_worked"],
        day_rate=day_rate,
        partial_hours=totals["partial_hours"],
        hourly_rate=hourly_rate,
        piecework_units=totals["piecework_units"],
        piecework_total=totals["piecework_total"],
        gross_total=totals["gross_total"],
        plots=plots,
        status="pending",
    )
    db.add(payslip)
    db.flush()
    return payslip


def get_payslip(db: Session, payslip_id: uuid.UUID) -> Payslip:
    payslip = db.get(Payslip, payslip_id)
    if not payslip:
        raise NotFoundError("Payslip", payslip_id)
    return payslip


def review_payslip(db: Session, actor: User, payslip: Payslip, approve: bool) -> Payslip:
    target = "approved" if approve else "rejected"
    if payslip.status != "pending":
        raise InvalidTransition("payslip", payslip.status, target)
    payslip.status = target
    payslip.approved_by = actor.id
    payslip.approved_at = utcnow()
    record_action(db, actor, "payslip", payslip.id, "APPROVE" if approve else "REJECT")
    db.commit()
    db.refresh(payslip)
    return payslip


def list_payslips(
    db: Session,
    user_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    project_id: Optional[uuid.UUID] = None,
    week_ending: Optional[date] = None,
) -> List[Payslip]:
    query = db.query(Payslip)
    if user_id:
        query = query.filter(Payslip.user_id == user_id)
    if status:
        query = query.filter(Payslip.status == status)
    if project_id:
        query = query.filter(Payslip.project_id == project_id)
    if week_ending:
        query = query.filter(Payslip.week_ending == week_ending)
    return query.order_by(Payslip.week_ending.desc()).all()


def year_to_date(db: Session, user_id: uuid.UUID, year: int) -> dict:
    """Totals of earned payslips with a week ending in ``year``."""
    row = (
        db.query(
            func.count(Payslip.id),
            func.coalesce(func.sum(Payslip.gross_total), 0.0),
            func.coalesce(func.sum(Payslip.days_worked), 0),
            func.coalesce(func.sum(Payslip.partial_hours), 0.0),
            func.coalesce(func.sum(Payslip.piecework_total), 0.0),
        )
        .filter(
            Payslip.user_id == user_id,
            Payslip.status.in_(EARNED_STATUSES),
            Payslip.week_ending >= date(year, 1, 1),
            Payslip.week_ending <= date(year, 12, 31),
        )
        .one()
    )
    count, gross, days, hours, piecework = row
    return {
        "year": year,
        "payslips": count,
        "gross_total": round(float(gross), 2),
        "days_worked": int(days),
        "partial_hours": round(float(hours), 2),
        "piecework_total": round(float(piecework), 2),
    }


# =====================
# Export batches
# =====================

def _next_batch_id(db: Session) -> str:
    count = db.query(func.count(PayrollExport.id)).scalar() or 0
    return f"PAYEXPORT-{count + 1:04d}"


def _payroll_row(db: Session, p: Payslip, batch_id: str) -> list:
    approver = None
    if p.timesheet is not None and p.timesheet.approved_by:
        approver = db.get(User, p.timesheet.approved_by)
    approved_at = p.timesheet.approved_at if p.timesheet is not None else None
    pw_rate = round(p.piecework_total / p.piecework_units, 2) if p.piecework_units else 0
    return [
        p.user.full_name if p.user else "",
        str(p.user_id),
        p.project.name if p.project else "",
        "; ".join(p.plots or []),
        p.week_ending.isoformat(),
        p.days_worked,
        p.partial_hours,
        p.piecework_units,
        p.day_rate,
        p.hourly_rate,
        pw_rate,
        round(p.gross_total - p.piecework_total, 2),
        p.piecework_total,
        p.gross_total,
        approver.full_name if approver else "",
        approved_at.date().isoformat() if approved_at else "",
        batch_id,
    ]


def export_payroll(db: Session, actor: User, payslip_ids: Optional[List[uuid.UUID]] = None) -> Tuple[PayrollExport, str]:
    """
    Export approved payslips as a numbered batch.

    Args:
        db: Database session
        actor: User running the export
        payslip_ids: Restrict to these payslips; all approved payslips otherwise

    Returns:
        (export batch, CSV content)
    """
    query = db.query(Payslip).filter(Payslip.status == "approved")
    if payslip_ids:
        query = query.filter(Payslip.id.in_(payslip_ids))
    payslips = query.order_by(Payslip.week_ending, Payslip.user_id).all()
    if not payslips:
        raise ValidationError("No approved payslips to export")

    batch = PayrollExport(
        batch_id=_next_batch_id(db),
        exported_by=actor.id,
        record_count=len(payslips),
        gross_value=round(sum(p.gross_total for p in payslips), 2),
        status="completed",
    )
    db.add(batch)

    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(PAYROLL_HEADERS)
    now = utcnow()
    for p in payslips:
        writer.writerow(_payroll_row(db, p, batch.batch_id))
        p.status = "exported"
        p.export_batch_id = batch.batch_id
        p.exported_at = now
    db.flush()
    record_action(db, actor, "payroll_export", batch.id, "EXPORT", context={"batch_id": batch.batch_id, "records": len(payslips)})
    db.commit()
    db.refresh(batch)
    log.info("payroll_exported", batch_id=batch.batch_id, records=len(payslips), gross=batch.gross_value)
    return batch, buf.getvalue()


def mark_batch_paid(db: Session, actor: User, batch_id: str) -> int:
    batch = db.query(PayrollExport).filter(PayrollExport.batch_id == batch_id).first()
    if not batch:
        raise NotFoundError("Payroll export", batch_id)
    payslips = db.query(Payslip).filter(Payslip.export_batch_id == batch_id, Payslip.status == "exported").all()
    now = utcnow()
    for p in payslips:
        p.status = "paid"
        p.paid_at = now
    record_action(db, actor, "payroll_export", batch.id, "MARK_PAID", context={"payslips": len(payslips)})
    db.commit()
    return len(payslips)


def list_exports(db: Session) -> List[PayrollExport]:
    return db.query(PayrollExport).order_by(PayrollExport.created_at.desc()).all()
