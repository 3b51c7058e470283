"""
Signature vault: document sign-off records and their exports.
"""
import csv
import io
import uuid
from datetime import date, datetime, time, timedelta
from typing import List, Optional

import structlog
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import Document, Plot, Project, Signature, User, utcnow
from ..reports.pdf import create_signature_bundle_pdf
from .audit import record_action
from .evidence import log_event

log = structlog.get_logger(__name__)

SIGNATURE_TYPES = ("RAMS", "Induction", "Site Notice", "Toolbox Talk", "Onboarding")
SIGNATURE_METHODS = ("Digital Pad", "Checkbox Confirm")

# Signature type -> evidence document type
_EVIDENCE_TYPES = {
    "RAMS": "RAMS",
    "Site Notice": "Site_Notice",
    "Induction": "Task_Plan",
    "Toolbox Talk": "Task_Plan",
    "Onboarding": "Task_Plan",
}

CSV_HEADERS = [
    "Operative Name", "Document Title", "Document Version", "Signature Type",
    "Project", "Plot", "Signed At", "Method", "Status", "Verified By",
]


def sign_document(db: Session, user: User, data: dict) -> Signature:
    """
    Record a signature against a document (or a free-standing sign-off such
    as an induction) and log a ``sign`` evidence event.

    Args:
        db: Database session
        user: The operative signing
        data: signature_type, method, signature_data, and either document_id
            or document_title (+ document_version, project_id, plot_id);
            verified_by optional
    """
    signature_type = data.get("signature_type")
    if signature_type not in SIGNATURE_TYPES:
        raise ValidationError(f"Signature type must be one of {', '.join(SIGNATURE_TYPES)}")
    method = data.get("method")
    if method not in SIGNATURE_METHODS:
        raise ValidationError(f"Method must be one of {', '.join(SIGNATURE_METHODS)}")
    signature_data = data.get("signature_data")
    if method == "Digital Pad" and not signature_data:
        raise ValidationError("A drawn signature is required for Digital Pad signing")

    document = None
    if data.get("document_id"):
        document = db.get(Document, data["document_id"])
        if document is None:
            raise NotFoundError("Document", data["document_id"])
        if not document.is_current:
            raise ValidationError("This document has been superseded; sign the current version")
        duplicate = (
            db.query(Signature.id)
            .filter(Signature.operative_id == user.id, Signature.document_id == document.id, Signature.status == "Valid")
            .first()
        )
        if duplicate:
            raise ConflictError("You have already signed this document version")
        title, version = document.title, document.version
        project_id, plot_id = document.project_id, data.get("plot_id") or document.plot_id
    else:
        title = (data.get("document_title") or "").strip()
        if not title:
            raise ValidationError("document_id or document_title is required")
        version = data.get("document_version")
        project_id = data.get("project_id") or user.current_project_id
        plot_id = data.get("plot_id")
        if project_id and db.get(Project, project_id) is None:
            raise NotFoundError("Project", project_id)
        if plot_id:
            plot = db.get(Plot, plot_id)
            if plot is None:
                raise NotFoundError("Plot", plot_id)
            if project_id and plot.project_id != project_id:
                raise ValidationError("Plot is not on this project")
            project_id = project_id or plot.project_id

    signature = Signature(
        operative_id=user.id,
        document_id=document.id if document else None,
        signature_type=signature_type,
        document_title=title,
        document_version=version,
        project_id=project_id,
        plot_id=plot_id,
        method=method,
        signature_data=signature_data if method == "Digital Pad" else None,
        verified_by=data.get("verified_by"),
        status="Valid",
        signed_at=utcnow(),
    )
    db.add(signature)
    db.flush()

    if project_id:
        log_event(
            db,
            project_id=project_id,
            action_type="sign",
            document_type=document.document_type if document else _EVIDENCE_TYPES[signature_type],
            operative_id=user.id,
            plot_id=plot_id,
            document=document,
            document_version=version,
            signature_id=signature.id,
            device_info=data.get("device_info"),
            metadata={"method": method, "signature_type": signature_type},
        )
    record_action(db, user, "signature", signature.id, "SIGN", context={"title": title, "version": version})
    db.commit()
    db.refresh(signature)
    log.info("document_signed", signature_id=str(signature.id), user_id=str(user.id), title=title)
    return signature


def supersede_signatures_for(db: Session, document: Document) -> int:
    """Flag every valid signature of ``document`` as Superseded; caller commits."""
    signatures = (
        db.query(Signature)
        .filter(Signature.document_id == document.id, Signature.status == "Valid")
        .all()
    )
    for s in signatures:
        s.status = "Superseded"
    return len(signatures)


def get_signature(db: Session, signature_id: uuid.UUID) -> Signature:
    signature = db.get(Signature, signature_id)
    if not signature:
        raise NotFoundError("Signature", signature_id)
    return signature


def verify_signature(db: Session, verifier: User, signature: Signature) -> Signature:
    if signature.operative_id == verifier.id:
        raise ValidationError("You cannot verify your own signature")
    signature.verified_by = verifier.id
    record_action(db, verifier, "signature", signature.id, "VERIFY")
    db.commit()
    db.refresh(signature)
    return signature


def list_signatures(
    db: Session,
    search: Optional[str] = None,
    operative_id: Optional[uuid.UUID] = None,
    signature_type: Optional[str] = None,
    status: Optional[str] = None,
    plot_id: Optional[uuid.UUID] = None,
    project_id: Optional[uuid.UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    include_superseded: bool = True,
) -> List[Signature]:
    query = db.query(Signature).join(User, User.id == Signature.operative_id)
    if search:
        needle = f"%{search.strip().lower()}%"
        query = query.filter(or_(
            func.lower(Signature.document_title).like(needle),
            func.lower(User.first_name + " " + User.last_name).like(needle),
        ))
    if operative_id:
        query = query.filter(Signature.operative_id == operative_id)
    if signature_type:
        query = query.filter(Signature.signature_type == signature_type)
    if status:
        query = query.filter(Signature.status == status)
    if not include_superseded:
        query = query.filter(Signature.status == "Valid")
    if plot_id:
        query = query.filter(Signature.plot_id == plot_id)
    if project_id:
        query = query.filter(Signature.project_id == project_id)
    if date_from:
        query = query.filter(Signature.signed_at >= datetime.combine(date_from, time.min))
    if date_to:
        query = query.filter(Signature.signed_at < datetime.combine(date_to + timedelta(days=1), time.min))
    return query.order_by(Signature.signed_at.desc()).all()


def my_signatures(db: Session, user: User, search: Optional[str] = None) -> List[Signature]:
    """Caller's own signatures; search matches title or project name."""
    signatures = (
        db.query(Signature)
        .filter(Signature.operative_id == user.id)
        .order_by(Signature.signed_at.desc())
        .all()
    )
    if search:
        needle = search.strip().lower()
        signatures = [
            s for s in signatures
            if needle in s.document_title.lower() or (s.project and needle in s.project.name.lower())
        ]
    return signatures


def signature_stats(signatures: List[Signature]) -> dict:
    total = len(signatures)
    valid = sum(1 for s in signatures if s.status == "Valid")
    by_type = {t: sum(1 for s in signatures if s.signature_type == t) for t in SIGNATURE_TYPES}
    return {
        "total": total,
        "valid": valid,
        "superseded": total - valid,
        "completion_rate": round(valid * 100 / total) if total else 0,
        "by_type": by_type,
    }


def signature_to_dict(s: Signature, include_data: bool = False) -> dict:
    data = {
        "id": str(s.id),
        "operative_id": str(s.operative_id),
        "operative_name": s.operative.full_name if s.operative else None,
        "document_id": str(s.document_id) if s.document_id else None,
        "document_title": s.document_title,
        "document_version": s.document_version,
        "signature_type": s.signature_type,
        "project_id": str(s.project_id) if s.project_id else None,
        "project": s.project.name if s.project else None,
        "plot_id": str(s.plot_id) if s.plot_id else None,
        "plot": s.plot.display_name if s.plot else None,
        "signed_at": s.signed_at.isoformat(),
        "method": s.method,
        "status": s.status,
        "verified_by": s.verifier.full_name if s.verifier else None,
    }
    if include_data:
        data["signature_data"] = s.signature_data
    return data


def signatures_csv(signatures: List[Signature]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(CSV_HEADERS)
    for s in signatures:
        d = signature_to_dict(s)
        writer.writerow([
            d["operative_name"], d["document_title"], d["document_version"] or "", d["signature_type"],
            d["project"] or "", d["plot"] or "", d["signed_at"], d["method"], d["status"], d["verified_by"] or "",
        ])
    return buf.getvalue()


def signatures_pdf(signatures: List[Signature], include_images: bool = True) -> bytes:
    return create_signature_bundle_pdf(
        "Signature Vault Export",
        [signature_to_dict(s, include_data=include_images) for s in signatures],
        include_images=include_images,
    )
