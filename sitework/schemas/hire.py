import uuid
from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator


class HireItemCreate(BaseModel):
    project_id: Optional[uuid.UUID] = None
    item_name: str = Field(min_length=1, max_length=255)
    supplier: str = Field(min_length=1, max_length=255)
    supplier_email: Optional[EmailStr] = None
    order_ref: Optional[str] = None
    on_hire_date: date
    expected_off_hire: Optional[date] = None
    weekly_cost: float = Field(default=0.0, ge=0)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.expected_off_hire and self.expected_off_hire < self.on_hire_date:
            raise ValueError("Expected off-hire date cannot be before the on-hire date")
        return self


class HireItemUpdate(BaseModel):
    item_name: Optional[str] = None
    supplier: Optional[str] = None
    supplier_email: Optional[EmailStr] = None
    order_ref: Optional[str] = None
    on_hire_date: Optional[date] = None
    expected_off_hire: Optional[date] = None
    weekly_cost: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None


class HireRequestCreate(BaseModel):
    request_type: Literal["off-hire", "extension"]
    details: Optional[str] = None
    new_end_date: Optional[date] = None
    send: bool = False


class HireRequestDecision(BaseModel):
    confirm: bool


class DraftRequest(BaseModel):
    request_type: Literal["off-hire", "extension"]
    new_end_date: Optional[date] = None
