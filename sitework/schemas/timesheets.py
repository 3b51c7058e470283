import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class PieceworkLineIn(BaseModel):
    work_item: str = Field(min_length=1, max_length=255)
    units: float = Field(gt=0)
    rate: float = Field(ge=0)


class PieceworkLineResponse(PieceworkLineIn):
    id: uuid.UUID
    subtotal: float

    class Config:
        from_attributes = True


class TimesheetCreate(BaseModel):
    project_id: uuid.UUID
    week_ending: date
    notes: Optional[str] = None


class EntryBase(BaseModel):
    work_date: date
    plot_id: Optional[uuid.UUID] = None
    work_type: Optional[str] = None
    is_full_day: bool = True
    hours: Optional[float] = None
    notes: Optional[str] = None
    rams_completed: bool = False
    cscs_valid: bool = False
    piecework: List[PieceworkLineIn] = []


class EntryCreate(EntryBase):
    @model_validator(mode="after")
    def check_hours(self):
        if not self.is_full_day and (self.hours is None or not (0 < self.hours < 24)):
            raise ValueError("Partial days need between 0 and 24 hours")
        return self


class EntryUpdate(BaseModel):
    work_date: Optional[date] = None
    plot_id: Optional[uuid.UUID] = None
    work_type: Optional[str] = None
    is_full_day: Optional[bool] = None
    hours: Optional[float] = None
    notes: Optional[str] = None
    rams_completed: Optional[bool] = None
    cscs_valid: Optional[bool] = None
    piecework: Optional[List[PieceworkLineIn]] = None


class EntryResponse(BaseModel):
    id: uuid.UUID
    work_date: date
    plot_id: Optional[uuid.UUID] = None
    work_type: Optional[str] = None
    is_full_day: bool
    hours: Optional[float] = None
    notes: Optional[str] = None
    rams_completed: bool
    cscs_valid: bool
    piecework: List[PieceworkLineResponse] = []

    class Config:
        from_attributes = True


class TimesheetResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    project_id: uuid.UUID
    week_ending: date
    status: str
    notes: Optional[str] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[uuid.UUID] = None
    rejection_reason: Optional[str] = None
    entries: List[EntryResponse] = []

    class Config:
        from_attributes = True


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1)


class PayslipResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    timesheet_id: uuid.UUID
    project_id: Optional[uuid.UUID] = None
    week_ending: date
    days_worked: int
    day_rate: float
    partial_hours: float
    hourly_rate: float
    piecework_units: float
    piecework_total: float
    gross_total: float
    plots: Optional[List[str]] = None
    status: str
    export_batch_id: Optional[str] = None
    paid_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PayslipReview(BaseModel):
    approve: bool


class PayrollExportRequest(BaseModel):
    payslip_ids: Optional[List[uuid.UUID]] = None


class PayrollExportResponse(BaseModel):
    id: uuid.UUID
    batch_id: str
    record_count: int
    gross_value: float
    status: str
    created_at: datetime

    class Config:
        from_attributes = True
