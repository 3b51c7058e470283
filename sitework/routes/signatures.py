from datetime import date
from typing import Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..db import get_db
from ..models.models import User
from ..schemas.signatures import SignatureCreate
from ..services import signatures
from ..services.permissions import has_permission
from ..services.time_rules import local_today
from .downloads import csv_response, pdf_response


router = APIRouter(prefix="/signatures", tags=["signatures"])


@router.post("", status_code=201)
def sign_document(
    req: SignatureCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    data = req.model_dump()
    if not data.get("device_info"):
        data["device_info"] = {"user_agent": request.headers.get("user-agent")}
    return signatures.signature_to_dict(signatures.sign_document(db, user, data))


@router.get("/mine")
def my_signatures(q: Optional[str] = None, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    items = signatures.my_signatures(db, user, q)
    return {"items": [signatures.signature_to_dict(s) for s in items], "stats": signatures.signature_stats(items)}


def _vault(
    db: Session,
    q: Optional[str],
    operative_id: Optional[uuid.UUID],
    signature_type: Optional[str],
    status: Optional[str],
    plot_id: Optional[uuid.UUID],
    project_id: Optional[uuid.UUID],
    date_from: Optional[date],
    date_to: Optional[date],
    include_superseded: bool,
):
    return signatures.list_signatures(
        db, search=q, operative_id=operative_id, signature_type=signature_type, status=status,
        plot_id=plot_id, project_id=project_id, date_from=date_from, date_to=date_to,
        include_superseded=include_superseded,
    )


@router.get("")
def signature_vault(
    q: Optional[str] = None,
    operative_id: Optional[uuid.UUID] = None,
    signature_type: Optional[str] = None,
    status: Optional[str] = None,
    plot_id: Optional[uuid.UUID] = None,
    project_id: Optional[uuid.UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    include_superseded: bool = True,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("signatures:read")),
):
    items = _vault(db, q, operative_id, signature_type, status, plot_id, project_id, date_from, date_to, include_superseded)
    return {"items": [signatures.signature_to_dict(s) for s in items], "stats": signatures.signature_stats(items)}


@router.get("/export")
def export_signatures(
    format: str = "csv",
    include_images: bool = True,
    q: Optional[str] = None,
    operative_id: Optional[uuid.UUID] = None,
    signature_type: Optional[str] = None,
    status: Optional[str] = None,
    plot_id: Optional[uuid.UUID] = None,
    project_id: Optional[uuid.UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    include_superseded: bool = True,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("signatures:read")),
):
    """CSV export or PDF bundle of the filtered vault."""
    items = _vault(db, q, operative_id, signature_type, status, plot_id, project_id, date_from, date_to, include_superseded)
    stamp = local_today().isoformat()
    if format == "pdf":
        return pdf_response(signatures.signatures_pdf(items, include_images), f"signature-vault-{stamp}.pdf")
    return csv_response(signatures.signatures_csv(items), f"signature-vault-{stamp}.csv")


@router.get("/{signature_id}")
def get_signature(signature_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    signature = signatures.get_signature(db, signature_id)
    if signature.operative_id != user.id and not has_permission(user, "signatures:read"):
        raise HTTPException(status_code=403, detail="Forbidden")
    return signatures.signature_to_dict(signature, include_data=True)


@router.post("/{signature_id}/verify")
def verify_signature(
    signature_id: uuid.UUID,
    db: Session = Depends(get_db),
    verifier: User = Depends(require_permissions("timesheets:approve")),
):
    signature = signatures.verify_signature(db, verifier, signatures.get_signature(db, signature_id))
    return signatures.signature_to_dict(signature)
