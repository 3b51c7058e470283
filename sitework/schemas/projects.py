import uuid
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

ProjectStatus = Literal["planning", "active", "on_hold", "completed"]
PlotStatus = Literal["not_started", "in_progress", "completed"]


class ProjectBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    code: Optional[str] = None
    client_name: Optional[str] = None
    address: Optional[str] = None
    status: ProjectStatus = "active"
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("code", "client_name", "address", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class ProjectCreate(ProjectBase):
    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("End date cannot be before the start date")
        return self


class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    client_name: Optional[str] = None
    address: Optional[str] = None
    status: Optional[ProjectStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ProjectResponse(ProjectBase):
    id: uuid.UUID
    created_at: datetime
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PlotBase(BaseModel):
    level: Optional[str] = None
    plot_number: str = Field(min_length=1, max_length=50)
    name: Optional[str] = None
    status: PlotStatus = "not_started"


class PlotCreate(PlotBase):
    pass


class PlotUpdate(BaseModel):
    level: Optional[str] = None
    plot_number: Optional[str] = None
    name: Optional[str] = None
    status: Optional[PlotStatus] = None


class PlotResponse(PlotBase):
    id: uuid.UUID
    project_id: uuid.UUID
    display_name: str
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MemberAdd(BaseModel):
    user_id: uuid.UUID
