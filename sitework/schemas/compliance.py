import uuid
from typing import List, Literal, Optional

from pydantic import BaseModel


class QualificationTypeResponse(BaseModel):
    id: uuid.UUID
    code: str
    name: str
    category: str
    validity_months: Optional[int] = None
    required_roles: Optional[List[str]] = None
    sort_order: int = 0

    class Config:
        from_attributes = True


class QualificationReview(BaseModel):
    approve: bool
    reason: Optional[str] = None


class ReminderRequest(BaseModel):
    user_ids: Optional[List[uuid.UUID]] = None


MatrixCompliance = Literal["compliant", "non-compliant"]
MatrixExpiry = Literal["expiring-soon", "expired"]
