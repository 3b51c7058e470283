from datetime import date
from typing import List, Optional
import os
import uuid

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..db import get_db
from ..models.models import User
from ..schemas.compliance import (
    MatrixCompliance,
    MatrixExpiry,
    QualificationReview,
    QualificationTypeResponse,
    ReminderRequest,
)
from ..services import compliance
from ..services.time_rules import local_today
from ..services.validation import validate_upload
from ..storage.local_provider import get_storage
from ..storage.provider import StorageProvider
from .downloads import csv_response


router = APIRouter(prefix="/compliance", tags=["compliance"])


@router.get("/types", response_model=List[QualificationTypeResponse])
def list_types(category: Optional[str] = None, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return compliance.list_types(db, category)


# =====================
# Compliance matrix
# =====================

@router.get("/matrix")
def compliance_matrix(
    project_id: Optional[uuid.UUID] = None,
    q: Optional[str] = None,
    compliance_filter: Optional[MatrixCompliance] = None,
    expiry: Optional[MatrixExpiry] = None,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("compliance:read")),
):
    """
    Qualification matrix for operatives and supervisors.

    Stats are computed over the unfiltered rows.
    """
    types, rows = compliance.build_matrix(db, local_today(), project_id=project_id)
    filtered = compliance.filter_matrix(rows, search=q, compliance=compliance_filter, expiry=expiry)
    return {
        "types": [{"code": t.code, "name": t.name} for t in types],
        "rows": filtered,
        "stats": compliance.matrix_stats(rows),
    }


@router.get("/matrix/export")
def export_matrix(
    project_id: Optional[uuid.UUID] = None,
    q: Optional[str] = None,
    compliance_filter: Optional[MatrixCompliance] = None,
    expiry: Optional[MatrixExpiry] = None,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("compliance:read")),
):
    today = local_today()
    types, rows = compliance.build_matrix(db, today, project_id=project_id)
    rows = compliance.filter_matrix(rows, search=q, compliance=compliance_filter, expiry=expiry)
    return csv_response(compliance.matrix_csv(types, rows), f"compliance-matrix-{today.isoformat()}.csv")


@router.post("/reminders")
def send_reminders(
    req: ReminderRequest,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("compliance:review")),
):
    sent = compliance.send_expiry_reminders(db, local_today(), actor, req.user_ids)
    return {"sent": sent}


@router.get("/training")
def training_matrix(
    project_id: Optional[uuid.UUID] = None,
    q: Optional[str] = None,
    status: Optional[str] = None,
    training_type: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("compliance:read")),
):
    return compliance.training_matrix(
        db, local_today(), project_id=project_id, search=q, status=status, training_type=training_type,
    )


# =====================
# Qualifications
# =====================

@router.get("/qualifications/mine")
def my_qualifications(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return compliance.my_qualifications(db, user, local_today())


@router.post("/qualifications", status_code=201)
async def add_qualification(
    type_code: str = Form(...),
    card_number: Optional[str] = Form(None),
    issued_on: Optional[date] = Form(None),
    expires_on: Optional[date] = Form(None),
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    user: User = Depends(get_current_user),
):
    """Upload a qualification card for review."""
    file_key = None
    if file is not None:
        content = await file.read()
        validate_upload(file.content_type, len(content))
        ext = os.path.splitext(file.filename or "")[1].lower()
        file_key = f"qualifications/{user.id}/{uuid.uuid4()}{ext}"
        storage.save(file_key, content)
    rec = compliance.add_qualification(db, user, type_code, card_number, issued_on, expires_on, file_key)
    return compliance.qualification_to_dict(rec, local_today())


@router.get("/qualifications/pending")
def pending_reviews(db: Session = Depends(get_db), _=Depends(require_permissions("compliance:review"))):
    return compliance.pending_reviews(db, local_today())


@router.post("/qualifications/{qualification_id}/review")
def review_qualification(
    qualification_id: uuid.UUID,
    req: QualificationReview,
    db: Session = Depends(get_db),
    reviewer: User = Depends(require_permissions("compliance:review")),
):
    rec = compliance.review_qualification(db, reviewer, qualification_id, req.approve, req.reason)
    return compliance.qualification_to_dict(rec, local_today())
