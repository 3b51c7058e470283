from datetime import date
from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..db import get_db
from ..models.models import User
from ..schemas.timesheets import (
    PayrollExportRequest,
    PayrollExportResponse,
    PayslipResponse,
    PayslipReview,
)
from ..services import payroll
from ..services.permissions import has_permission
from ..services.time_rules import local_today
from .downloads import csv_response


router = APIRouter(prefix="/payroll", tags=["payroll"])


@router.get("/payslips", response_model=List[PayslipResponse])
def list_payslips(
    user_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    project_id: Optional[uuid.UUID] = None,
    week_ending: Optional[date] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not has_permission(user, "payroll:export"):
        user_id = user.id
    return payroll.list_payslips(db, user_id=user_id, status=status, project_id=project_id, week_ending=week_ending)


@router.post("/payslips/{payslip_id}/review", response_model=PayslipResponse)
def review_payslip(
    payslip_id: uuid.UUID,
    req: PayslipReview,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("payroll:export")),
):
    return payroll.review_payslip(db, actor, payroll.get_payslip(db, payslip_id), req.approve)


@router.get("/ytd")
def year_to_date(
    user_id: Optional[uuid.UUID] = None,
    year: Optional[int] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Calendar-year totals of approved, exported and paid payslips."""
    target = user_id or user.id
    if target != user.id and not has_permission(user, "payroll:export"):
        raise HTTPException(status_code=403, detail="Forbidden")
    return payroll.year_to_date(db, target, year or local_today().year)


@router.post("/exports")
def export_payroll(
    req: PayrollExportRequest,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("payroll:export")),
):
    batch, content = payroll.export_payroll(db, actor, req.payslip_ids)
    response = csv_response(content, f"{batch.batch_id}.csv")
    response.headers["X-Batch-ID"] = batch.batch_id
    return response


@router.get("/exports", response_model=List[PayrollExportResponse])
def list_exports(db: Session = Depends(get_db), _=Depends(require_permissions("payroll:export"))):
    return payroll.list_exports(db)


@router.post("/exports/{batch_id}/paid")
def mark_paid(
    batch_id: str,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("payroll:export")),
):
    return {"batch_id": batch_id, "paid": payroll.mark_batch_paid(db, actor, batch_id)}
