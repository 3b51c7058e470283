import uuid
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from ..services.validation import is_valid_phone

RoleName = Literal["operative", "supervisor", "pm", "admin", "dpo", "director"]
ActivationStatus = Literal["provisional", "active", "pending", "inactive"]


def _phone(v):
    if v is None:
        return None
    v = str(v).strip()
    if v and not is_valid_phone(v):
        raise ValueError("Phone number may only contain digits, spaces, +, - and brackets")
    return v or None


class UserCreate(BaseModel):
    email: EmailStr
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=8)
    phone: Optional[str] = None
    role: RoleName = "operative"
    activation_status: ActivationStatus = "active"
    preferred_language: str = "en"
    current_project_id: Optional[uuid.UUID] = None

    @field_validator("phone", mode="before")
    @classmethod
    def check_phone(cls, v):
        return _phone(v)


class UserUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    preferred_language: Optional[str] = None
    current_project_id: Optional[uuid.UUID] = None

    @field_validator("phone", mode="before")
    @classmethod
    def check_phone(cls, v):
        return _phone(v)


class RoleChange(BaseModel):
    role: RoleName


class EmploymentStatusChange(BaseModel):
    is_active: bool


class DeleteRequest(BaseModel):
    reason: Optional[str] = None


class UserResponse(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    name: str
    phone: Optional[str] = None
    role: str
    roles: List[str] = []
    is_active: bool
    activation_status: str
    preferred_language: str
    current_project_id: Optional[str] = None
    current_project: Optional[str] = None
    created_at: Optional[str] = None
    last_login_at: Optional[str] = None
    deleted_at: Optional[str] = None


class UserPage(BaseModel):
    items: List[UserResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class RoleResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    permissions: Optional[dict] = None

    class Config:
        from_attributes = True


class PayRateCreate(BaseModel):
    day_rate: float = Field(ge=0)
    hourly_rate: float = Field(ge=0)
    bonus_rate: float = Field(default=0.0, ge=0)
    effective_from: date


class PayRateResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    role: str
    day_rate: float
    hourly_rate: float
    bonus_rate: float
    effective_from: date
    effective_to: Optional[date] = None
    created_at: datetime

    class Config:
        from_attributes = True
