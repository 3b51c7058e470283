import uuid
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .documents import DocumentType

ActionType = Literal["view", "sign", "download", "print", "qr_scan", "upload", "supersede"]
PosterType = Literal["sign-in", "welfare", "hoarding", "office", "plot-specific"]


class EvidenceEventCreate(BaseModel):
    project_id: uuid.UUID
    plot_id: Optional[uuid.UUID] = None
    document_id: Optional[uuid.UUID] = None
    document_type: DocumentType
    document_version: Optional[str] = None
    document_revision: Optional[str] = None
    action_type: ActionType
    device_info: Optional[dict] = None
    metadata: Optional[dict] = None


class EvidenceRecordResponse(BaseModel):
    id: uuid.UUID
    sequence: int
    project_id: uuid.UUID
    operative_id: Optional[uuid.UUID] = None
    document_id: Optional[uuid.UUID] = None
    document_type: str
    document_version: Optional[str] = None
    action_type: str
    created_at: datetime
    previous_hash: Optional[str] = None
    evidence_hash: str

    class Config:
        from_attributes = True


class QrValidationRequest(BaseModel):
    document_id: uuid.UUID
    poster_token: Optional[str] = None
    location: Optional[str] = None
    device_info: Optional[dict] = None


class QrPosterCreate(BaseModel):
    project_id: uuid.UUID
    plot_id: Optional[uuid.UUID] = None
    poster_type: PosterType
    location_name: str = Field(min_length=1, max_length=255)
    scope_description: Optional[str] = None
    document_ids: List[uuid.UUID] = []


class QrPosterResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    plot_id: Optional[uuid.UUID] = None
    poster_type: str
    location_name: str
    scope_description: Optional[str] = None
    document_ids: Optional[List[str]] = None
    token: str
    status: str
    scan_count: int
    last_scanned_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ExportScope(BaseModel):
    project_ids: List[uuid.UUID] = []
    operative_ids: List[uuid.UUID] = []
    plot_ids: List[uuid.UUID] = []
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class EvidenceExportCreate(BaseModel):
    export_type: Literal["project", "operative", "plot", "company", "custom"]
    export_format: Literal["csv", "json", "pdf"] = "csv"
    scope: ExportScope = ExportScope()


class EvidenceExportResponse(BaseModel):
    id: uuid.UUID
    export_type: str
    export_format: str
    scope: Optional[dict] = None
    status: str
    record_count: int
    error_message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
