from datetime import date
from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..db import get_db
from ..models.models import Project, User
from ..schemas.documents import DocumentResponse
from ..schemas.evidence import (
    EvidenceEventCreate,
    EvidenceExportCreate,
    EvidenceExportResponse,
    EvidenceRecordResponse,
    QrPosterCreate,
    QrPosterResponse,
    QrValidationRequest,
)
from ..services import evidence
from ..services.documents import get_document
from ..services.time_rules import local_today
from ..storage.local_provider import get_storage
from ..storage.provider import StorageProvider
from .downloads import csv_response, pdf_response


router = APIRouter(prefix="/evidence", tags=["evidence"])

_EXPORT_MEDIA_TYPES = {"csv": "text/csv", "json": "application/json", "pdf": "application/pdf"}


def _device(request: Request) -> dict:
    return {"user_agent": request.headers.get("user-agent"), "ip": request.client.host if request.client else None}


# =====================
# Chain
# =====================

@router.post("/events", response_model=EvidenceRecordResponse, status_code=201)
def log_event(
    req: EvidenceEventCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Record an event performed by the caller."""
    if not db.get(Project, req.project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    document = get_document(db, req.document_id) if req.document_id else None
    if document is not None and document.project_id != req.project_id:
        raise HTTPException(status_code=400, detail="Document does not belong to this project")
    record = evidence.log_event(
        db,
        project_id=req.project_id,
        action_type=req.action_type,
        document_type=req.document_type,
        operative_id=user.id,
        plot_id=req.plot_id,
        document=document,
        document_version=req.document_version,
        document_revision=req.document_revision,
        device_info=req.device_info or _device(request),
        metadata=req.metadata,
    )
    db.commit()
    db.refresh(record)
    return record


@router.get("/report")
def evidence_chain_report(
    project_id: Optional[uuid.UUID] = None,
    operative_id: Optional[uuid.UUID] = None,
    plot_id: Optional[uuid.UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    q: Optional[str] = None,
    document_type: Optional[str] = None,
    action_type: Optional[str] = None,
    limit: int = 500,
    format: str = "json",
    db: Session = Depends(get_db),
    _=Depends(require_permissions("evidence:read")),
):
    rows = evidence.get_evidence_chain_report(
        db, project_id=project_id, operative_id=operative_id, plot_id=plot_id,
        date_from=date_from, date_to=date_to, search=q, document_type=document_type,
        action_type=action_type, limit=min(max(1, limit), 5000),
    )
    if format == "csv":
        return csv_response(evidence.report_csv(rows), f"evidence-chain-{local_today().isoformat()}.csv")
    return rows


@router.get("/verify/{project_id}")
def verify_chain(project_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("evidence:read"))):
    return evidence.verify_chain(db, project_id)


# =====================
# QR validation
# =====================

@router.post("/qr/validate")
def validate_qr(
    req: QrValidationRequest,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return evidence.validate_document_qr(
        db, user, req.document_id,
        device_info=req.device_info or _device(request),
        location=req.location,
        poster_token=req.poster_token,
    )


@router.get("/qr/{token}")
def scan_poster(token: str, db: Session = Depends(get_db), _=Depends(get_current_user)):
    """Documents published on a poster, for the scanning device to validate."""
    poster = evidence.get_poster_by_token(db, token)
    if poster.status != "active":
        raise HTTPException(status_code=410, detail="This poster is no longer active")
    return {
        "poster": QrPosterResponse.model_validate(poster),
        "project": poster.project.name if poster.project else None,
        "documents": [DocumentResponse.model_validate(d) for d in evidence.poster_documents(db, poster)],
    }


# =====================
# Posters
# =====================

@router.post("/posters", response_model=QrPosterResponse, status_code=201)
def create_poster(
    req: QrPosterCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("documents:write")),
):
    return evidence.create_poster(db, user, req.model_dump())


@router.get("/posters", response_model=List[QrPosterResponse])
def list_posters(
    project_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("evidence:read")),
):
    return evidence.list_posters(db, project_id, status)


@router.get("/posters/{poster_id}", response_model=QrPosterResponse)
def get_poster(poster_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("evidence:read"))):
    return evidence.get_poster(db, poster_id)


@router.post("/posters/{poster_id}/deactivate", response_model=QrPosterResponse)
def deactivate_poster(
    poster_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("documents:write")),
):
    return evidence.deactivate_poster(db, user, evidence.get_poster(db, poster_id))


@router.get("/posters/{poster_id}/pdf")
def poster_pdf(poster_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("evidence:read"))):
    poster = evidence.get_poster(db, poster_id)
    return pdf_response(evidence.render_poster(db, poster), f"poster-{poster.location_name}.pdf", inline=True)


# =====================
# Exports
# =====================

@router.post("/exports", response_model=EvidenceExportResponse, status_code=201)
def create_export(
    req: EvidenceExportCreate,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    user: User = Depends(require_permissions("evidence:export")),
):
    return evidence.create_export(db, storage, user, req.export_type, req.export_format, req.scope.model_dump(mode="json"))


@router.get("/exports", response_model=List[EvidenceExportResponse])
def list_exports(limit: int = 50, db: Session = Depends(get_db), _=Depends(require_permissions("evidence:export"))):
    return evidence.list_exports(db, limit)


@router.get("/exports/{export_id}/download")
def download_export(
    export_id: uuid.UUID,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    _=Depends(require_permissions("evidence:export")),
):
    export = evidence.get_export(db, export_id)
    if export.status != "completed" or not export.file_key or not storage.exists(export.file_key):
        raise HTTPException(status_code=404, detail="Export file not available")
    return Response(
        content=storage.open(export.file_key),
        media_type=_EXPORT_MEDIA_TYPES[export.export_format],
        headers={"Content-Disposition": f'attachment; filename="evidence-export-{export.id}.{export.export_format}"'},
    )
