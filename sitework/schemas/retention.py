import uuid
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class RetentionRuleUpdate(BaseModel):
    description: Optional[str] = None
    retention_period: Optional[int] = Field(default=None, ge=1)
    unit: Optional[Literal["months", "years"]] = None
    auto_archive: Optional[bool] = None
    auto_delete: Optional[bool] = None
    requires_approval: Optional[bool] = None
    legal_basis: Optional[str] = None


class RetentionRuleResponse(BaseModel):
    id: uuid.UUID
    data_type: str
    description: Optional[str] = None
    retention_period: int
    unit: str
    auto_archive: bool
    auto_delete: bool
    requires_approval: bool
    legal_basis: Optional[str] = None

    class Config:
        from_attributes = True


class RetentionRecordCreate(BaseModel):
    data_type: str
    entity_type: Literal["user", "signature", "document", "timesheet", "qualification"]
    entity_id: Optional[str] = None
    subject_user_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    created_on: date
    data_size: int = Field(default=0, ge=0)
    can_request_deletion: bool = True


class OverrideRequest(BaseModel):
    reason: str = Field(min_length=1)


class DeletionRequestCreate(BaseModel):
    reason: str = Field(min_length=1)


class DeletionDecision(BaseModel):
    approve: bool
    note: Optional[str] = None


class DeletionRequestResponse(BaseModel):
    id: uuid.UUID
    record_id: uuid.UUID
    user_id: uuid.UUID
    reason: str
    status: str
    due_by: date
    decided_at: Optional[datetime] = None
    decision_note: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ArchiveLogResponse(BaseModel):
    id: uuid.UUID
    record_id: Optional[uuid.UUID] = None
    subject_user_id: Optional[uuid.UUID] = None
    data_type: str
    action: str
    reason: Optional[str] = None
    approved_by: Optional[str] = None
    record_count: int
    data_size: int
    created_at: datetime

    class Config:
        from_attributes = True
