import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel

DocumentType = Literal["RAMS", "Drawing", "Task_Plan", "Site_Notice", "POD"]


class DocumentResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    plot_id: Optional[uuid.UUID] = None
    document_type: str
    title: str
    version: str
    revision: Optional[str] = None
    is_current: bool
    superseded_by_id: Optional[uuid.UUID] = None
    superseded_at: Optional[datetime] = None
    content_type: Optional[str] = None
    uploaded_by: Optional[uuid.UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AccessEvent(BaseModel):
    action: Literal["view", "download", "print"] = "view"
    device_info: Optional[dict] = None
