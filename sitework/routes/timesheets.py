from datetime import date
from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..db import get_db
from ..models.models import Timesheet, User
from ..schemas.timesheets import (
    EntryCreate,
    EntryResponse,
    EntryUpdate,
    RejectRequest,
    TimesheetCreate,
    TimesheetResponse,
)
from ..services import timesheets as ts_service
from ..services.payroll import resolve_rates
from ..services.permissions import has_permission


router = APIRouter(prefix="/timesheets", tags=["timesheets"])


def _visible(ts: Timesheet, user: User) -> Timesheet:
    if ts.user_id != user.id and not has_permission(user, "timesheets:approve"):
        raise HTTPException(status_code=403, detail="Forbidden")
    return ts


@router.get("", response_model=List[TimesheetResponse])
def list_timesheets(
    user_id: Optional[uuid.UUID] = None,
    project_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    week_ending: Optional[date] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Own timesheets; approvers may list anyone's."""
    if not has_permission(user, "timesheets:approve"):
        user_id = user.id
    return ts_service.list_timesheets(db, user_id=user_id, project_id=project_id, status=status, week_ending=week_ending)


@router.post("", response_model=TimesheetResponse, status_code=201)
def create_timesheet(req: TimesheetCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return ts_service.create_timesheet(db, user, req.project_id, req.week_ending, req.notes)


@router.get("/{timesheet_id}", response_model=TimesheetResponse)
def get_timesheet(timesheet_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _visible(ts_service.get_timesheet(db, timesheet_id), user)


@router.get("/{timesheet_id}/summary")
def timesheet_summary(timesheet_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Weekly totals at the rates in force for the week, plus the compliance summary."""
    ts = _visible(ts_service.get_timesheet(db, timesheet_id), user)
    day_rate, hourly_rate = resolve_rates(db, ts.user_id, ts.week_ending)
    return {
        "totals": ts_service.weekly_totals(ts.entries, day_rate, hourly_rate),
        "compliance": ts_service.compliance_summary(ts.entries),
    }


@router.post("/{timesheet_id}/entries", response_model=EntryResponse, status_code=201)
def add_entry(
    timesheet_id: uuid.UUID,
    req: EntryCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    ts = ts_service.get_timesheet(db, timesheet_id)
    return ts_service.add_entry(db, user, ts, req.model_dump())


@router.patch("/{timesheet_id}/entries/{entry_id}", response_model=EntryResponse)
def update_entry(
    timesheet_id: uuid.UUID,
    entry_id: uuid.UUID,
    req: EntryUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    ts = ts_service.get_timesheet(db, timesheet_id)
    return ts_service.update_entry(db, user, ts, entry_id, req.model_dump(exclude_unset=True))


@router.delete("/{timesheet_id}/entries/{entry_id}", status_code=204)
def delete_entry(
    timesheet_id: uuid.UUID,
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    ts = ts_service.get_timesheet(db, timesheet_id)
    ts_service.delete_entry(db, user, ts, entry_id)


@router.post("/{timesheet_id}/submit", response_model=TimesheetResponse)
def submit_timesheet(timesheet_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return ts_service.submit_timesheet(db, user, ts_service.get_timesheet(db, timesheet_id))


@router.post("/{timesheet_id}/approve", response_model=TimesheetResponse)
def approve_timesheet(
    timesheet_id: uuid.UUID,
    db: Session = Depends(get_db),
    approver: User = Depends(require_permissions("timesheets:approve")),
):
    return ts_service.approve_timesheet(db, approver, ts_service.get_timesheet(db, timesheet_id))


@router.post("/{timesheet_id}/reject", response_model=TimesheetResponse)
def reject_timesheet(
    timesheet_id: uuid.UUID,
    req: RejectRequest,
    db: Session = Depends(get_db),
    approver: User = Depends(require_permissions("timesheets:approve")),
):
    return ts_service.reject_timesheet(db, approver, ts_service.get_timesheet(db, timesheet_id), req.reason)
