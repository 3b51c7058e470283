"""
Evidence chain: hash-linked record of document views, signatures, scans and
version changes, with QR posters and evidence exports.
"""
import csv
import io
import json
import secrets
import uuid
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import InvalidTransition, NotFoundError, ValidationError
from ..models.models import (
    Document,
    EvidenceExport,
    EvidenceRecord,
    Plot,
    Project,
    QrPoster,
    User,
    utcnow,
)
from ..reports.pdf import create_poster_pdf, create_table_report_pdf
from ..storage.provider import StorageProvider
from .audit import canonical_json, record_action, sha256_hex
from .notifications import notify
from .permissions import is_supervisor

log = structlog.get_logger(__name__)

ACTION_TYPES = ("view", "sign", "download", "print", "qr_scan", "upload", "supersede")
DOCUMENT_TYPES = ("RAMS", "Drawing", "Task_Plan", "Site_Notice", "POD")
POSTER_TYPES = ("sign-in", "welfare", "hoarding", "office", "plot-specific")
EXPORT_TYPES = ("project", "operative", "plot", "company", "custom")
EXPORT_FORMATS = ("csv", "json", "pdf")

REPORT_HEADERS = [
    "Sequence", "Timestamp", "Project", "Operative", "Plot", "Document Type",
    "Version", "Revision", "Action", "Evidence Hash",
]


# =====================
# Chain
# =====================

def _event_payload(record: EvidenceRecord) -> Dict[str, Any]:
    return {
        "sequence": record.sequence,
        "project_id": str(record.project_id),
        "operative_id": str(record.operative_id) if record.operative_id else None,
        "plot_id": str(record.plot_id) if record.plot_id else None,
        "document_id": str(record.document_id) if record.document_id else None,
        "document_type": record.document_type,
        "document_version": record.document_version,
        "document_revision": record.document_revision,
        "action_type": record.action_type,
        "signature_id": str(record.signature_id) if record.signature_id else None,
        "poster_id": str(record.poster_id) if record.poster_id else None,
        "device_info": record.device_info or None,
        "metadata": record.event_metadata or None,
        "created_at": record.created_at.isoformat(),
    }


def compute_evidence_hash(record: EvidenceRecord, secret: Optional[str] = None) -> str:
    """SHA-256 over the previous link, the canonical event and the integrity secret."""
    secret = settings.jwt_secret if secret is None else secret
    return sha256_hex(f"{record.previous_hash or ''}:{canonical_json(_event_payload(record))}:{secret}")


def chain_lock_query(db: Session, project_id: uuid.UUID):
    """SELECT ... FOR UPDATE on the project that owns a chain."""
    return db.query(Project).filter(Project.id == project_id).with_for_update()


def log_event(
    db: Session,
    project_id: uuid.UUID,
    action_type: str,
    document_type: str,
    operative_id: Optional[uuid.UUID] = None,
    plot_id: Optional[uuid.UUID] = None,
    document: Optional[Document] = None,
    document_version: Optional[str] = None,
    document_revision: Optional[str] = None,
    signature_id: Optional[uuid.UUID] = None,
    poster_id: Optional[uuid.UUID] = None,
    device_info: Optional[dict] = None,
    metadata: Optional[dict] = None,
) -> EvidenceRecord:
    """
    Append an event to the project's evidence chain.

    The event joins the caller's transaction; committing is the caller's job.

    Args:
        db: Database session
        project_id: Chain the event belongs to
        action_type: view|sign|download|print|qr_scan|upload|supersede
        document_type: RAMS|Drawing|Task_Plan|Site_Notice|POD
        document: Document acted on; supplies version/revision when not given

    Returns:
        The stored EvidenceRecord
    """
    if action_type not in ACTION_TYPES:
        raise ValidationError(f"Unknown evidence action '{action_type}'")

    # Appends to one project's chain are serialised on the project row
    if chain_lock_query(db, project_id).one_or_none() is None:
        raise NotFoundError("Project", project_id)
    last = (
        db.query(EvidenceRecord)
        .filter(EvidenceRecord.project_id == project_id)
        .order_by(EvidenceRecord.sequence.desc())
        .first()
    )
    record = EvidenceRecord(
        sequence=(last.sequence + 1) if last else 1,
        project_id=project_id,
        operative_id=operative_id,
        plot_id=plot_id if plot_id else (document.plot_id if document else None),
        document_id=document.id if document else None,
        document_type=document_type,
        document_version=document_version or (document.version if document else None),
        document_revision=document_revision or (document.revision if document else None),
        action_type=action_type,
        signature_id=signature_id,
        poster_id=poster_id,
        device_info=device_info or {},
        event_metadata=metadata or {},
        created_at=utcnow(),
        previous_hash=last.evidence_hash if last else None,
    )
    record.evidence_hash = compute_evidence_hash(record)
    db.add(record)
    db.flush()
    log.info("evidence_logged", project_id=str(project_id), sequence=record.sequence, action=action_type)
    return record


def verify_chain(db: Session, project_id: uuid.UUID) -> dict:
    """
    Walk a project's chain in sequence order.

    Returns:
        valid flag, number of records checked and the first broken sequence
    """
    records = (
        db.query(EvidenceRecord)
        .filter(EvidenceRecord.project_id == project_id)
        .order_by(EvidenceRecord.sequence)
        .all()
    )
    previous = None
    for expected_seq, record in enumerate(records, start=1):
        broken = (
            record.sequence != expected_seq
            or record.previous_hash != previous
            or record.evidence_hash != compute_evidence_hash(record)
        )
        if broken:
            log.warning("evidence_chain_broken", project_id=str(project_id), sequence=record.sequence)
            return {"valid": False, "checked": expected_seq, "broken_at": record.sequence}
        previous = record.evidence_hash
    return {"valid": True, "checked": len(records), "broken_at": None}


# =====================
# Reporting
# =====================

def _day_bounds(date_from: Optional[date], date_to: Optional[date]) -> Tuple[Optional[datetime], Optional[datetime]]:
    start = datetime.combine(date_from, time.min) if date_from else None
    end = datetime.combine(date_to + timedelta(days=1), time.min) if date_to else None
    return start, end


def get_evidence_chain_report(
    db: Session,
    project_id: Optional[uuid.UUID] = None,
    operative_id: Optional[uuid.UUID] = None,
    plot_id: Optional[uuid.UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    search: Optional[str] = None,
    document_type: Optional[str] = None,
    action_type: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[dict]:
    """Evidence rows, newest first, with project, operative and plot names resolved."""
    query = (
        db.query(EvidenceRecord, Project.name, User.first_name, User.last_name, Plot.plot_number)
        .join(Project, Project.id == EvidenceRecord.project_id)
        .outerjoin(User, User.id == EvidenceRecord.operative_id)
        .outerjoin(Plot, Plot.id == EvidenceRecord.plot_id)
    )
    if project_id:
        query = query.filter(EvidenceRecord.project_id == project_id)
    if operative_id:
        query = query.filter(EvidenceRecord.operative_id == operative_id)
    if plot_id:
        query = query.filter(EvidenceRecord.plot_id == plot_id)
    start, end = _day_bounds(date_from, date_to)
    if start:
        query = query.filter(EvidenceRecord.created_at >= start)
    if end:
        query = query.filter(EvidenceRecord.created_at < end)
    if document_type:
        query = query.filter(EvidenceRecord.document_type == document_type)
    if action_type:
        query = query.filter(EvidenceRecord.action_type == action_type)
    if search:
        needle = f"%{search.strip().lower()}%"
        query = query.filter(or_(
            func.lower(User.first_name + " " + User.last_name).like(needle),
            func.lower(Project.name).like(needle),
            func.lower(Plot.plot_number).like(needle),
            func.lower(EvidenceRecord.document_version).like(needle),
        ))
    query = query.order_by(EvidenceRecord.created_at.desc(), EvidenceRecord.sequence.desc())
    if limit:
        query = query.limit(limit)

    rows = []
    for record, project_name, first, last, plot_number in query.all():
        rows.append({
            "id": str(record.id),
            "sequence": record.sequence,
            "project_id": str(record.project_id),
            "project_name": project_name,
            "operative_id": str(record.operative_id) if record.operative_id else None,
            "operative_name": f"{first} {last}".strip() if first else None,
            "plot_id": str(record.plot_id) if record.plot_id else None,
            "plot_number": plot_number,
            "document_id": str(record.document_id) if record.document_id else None,
            "document_type": record.document_type,
            "document_version": record.document_version,
            "document_revision": record.document_revision,
            "action_type": record.action_type,
            "signature_id": str(record.signature_id) if record.signature_id else None,
            "device_info": record.device_info,
            "metadata": record.event_metadata,
            "created_at": record.created_at.isoformat(),
            "previous_hash": record.previous_hash,
            "evidence_hash": record.evidence_hash,
        })
    return rows


def _report_row(r: dict) -> list:
    return [
        r["sequence"], r["created_at"], r["project_name"], r["operative_name"] or "",
        r["plot_number"] or "", r["document_type"], r["document_version"] or "",
        r["document_revision"] or "", r["action_type"], r["evidence_hash"],
    ]


def report_csv(rows: List[dict]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(REPORT_HEADERS)
    for r in rows:
        writer.writerow(_report_row(r))
    return buf.getvalue()


# =====================
# QR validation & posters
# =====================

def _latest_version(db: Session, document: Document) -> Document:
    current = document
    seen = set()
    while current.superseded_by_id and current.id not in seen:
        seen.add(current.id)
        successor = db.get(Document, current.superseded_by_id)
        if successor is None:
            break
        current = successor
    return current


def _can_access_project(user: User, project: Project) -> bool:
    return is_supervisor(user) or any(m.id == user.id for m in project.members) or user.current_project_id == project.id


def validate_document_qr(
    db: Session,
    user: User,
    document_id: uuid.UUID,
    device_info: Optional[dict] = None,
    location: Optional[str] = None,
    poster_token: Optional[str] = None,
) -> dict:
    """
    Check that a scanned document is the current version.

    Returns a dict with ``status`` current|superseded|error|unauthorized and a
    ``message``. Scans of existing documents are recorded as qr_scan events.
    """
    document = db.get(Document, document_id)
    if document is None:
        return {"status": "error", "message": "Document not found. Speak to your supervisor."}

    project = document.project
    if not _can_access_project(user, project):
        log.warning("qr_scan_unauthorized", document_id=str(document_id), user_id=str(user.id))
        return {
            "status": "unauthorized",
            "document_id": str(document.id),
            "message": "You are not assigned to the project this document belongs to.",
        }

    poster = None
    if poster_token:
        poster = db.query(QrPoster).filter(QrPoster.token == poster_token).first()
        if poster is not None and poster.status == "active":
            poster.scan_count = (poster.scan_count or 0) + 1
            poster.last_scanned_at = utcnow()

    if document.is_current:
        result = {
            "status": "current",
            "message": f"{document.title} v{document.version} is the current approved version.",
        }
    else:
        latest = _latest_version(db, document)
        result = {
            "status": "superseded",
            "latest_version": latest.version,
            "latest_document_id": str(latest.id),
            "message": f"This document is superseded. Latest version is {latest.version}. Do not work from this copy.",
        }
        notify(db, user, "document_superseded", {
            "subject": f"Superseded document scanned: {document.title}",
            "body": result["message"],
            "document_id": str(document.id),
            "latest_version": latest.version,
        })

    result.update({
        "document_id": str(document.id),
        "title": document.title,
        "version": document.version,
        "revision": document.revision,
    })
    log_event(
        db,
        project_id=document.project_id,
        action_type="qr_scan",
        document_type=document.document_type,
        operative_id=user.id,
        document=document,
        poster_id=poster.id if poster else None,
        device_info=device_info,
        metadata={"scan_result": result["status"], "location": location},
    )
    db.commit()
    return result


def poster_url(poster: QrPoster) -> str:
    return f"{settings.public_base_url.rstrip('/')}/evidence/qr/{poster.token}"


def create_poster(db: Session, user: User, data: dict) -> QrPoster:
    if data.get("poster_type") not in POSTER_TYPES:
        raise ValidationError(f"Poster type must be one of {', '.join(POSTER_TYPES)}")
    project = db.get(Project, data["project_id"])
    if project is None:
        raise NotFoundError("Project", data["project_id"])
    if data["poster_type"] == "plot-specific" and not data.get("plot_id"):
        raise ValidationError("Plot-specific posters need a plot")
    document_ids = [str(d) for d in data.get("document_ids") or []]
    for doc_id in document_ids:
        doc = db.get(Document, uuid.UUID(doc_id))
        if doc is None or doc.project_id != project.id:
            raise ValidationError(f"Document '{doc_id}' does not belong to this project")

    poster = QrPoster(
        project_id=project.id,
        plot_id=data.get("plot_id"),
        poster_type=data["poster_type"],
        location_name=data["location_name"].strip(),
        scope_description=data.get("scope_description"),
        document_ids=document_ids,
        token=secrets.token_urlsafe(24),
        status="active",
        created_by=user.id,
    )
    db.add(poster)
    db.flush()
    record_action(db, user, "qr_poster", poster.id, "CREATE", context={"location": poster.location_name})
    db.commit()
    db.refresh(poster)
    return poster


def get_poster(db: Session, poster_id: uuid.UUID) -> QrPoster:
    poster = db.get(QrPoster, poster_id)
    if not poster:
        raise NotFoundError("QR poster", poster_id)
    return poster


def get_poster_by_token(db: Session, token: str) -> QrPoster:
    poster = db.query(QrPoster).filter(QrPoster.token == token).first()
    if not poster:
        raise NotFoundError("QR poster")
    return poster


def list_posters(db: Session, project_id: Optional[uuid.UUID] = None, status: Optional[str] = None) -> List[QrPoster]:
    query = db.query(QrPoster)
    if project_id:
        query = query.filter(QrPoster.project_id == project_id)
    if status:
        query = query.filter(QrPoster.status == status)
    return query.order_by(QrPoster.created_at.desc()).all()


def deactivate_poster(db: Session, user: User, poster: QrPoster) -> QrPoster:
    if poster.status != "active":
        raise InvalidTransition("QR poster", poster.status, "inactive")
    poster.status = "inactive"
    record_action(db, user, "qr_poster", poster.id, "DEACTIVATE")
    db.commit()
    db.refresh(poster)
    return poster


def poster_documents(db: Session, poster: QrPoster) -> List[Document]:
    docs = [db.get(Document, uuid.UUID(d)) for d in poster.document_ids or []]
    return [d for d in docs if d is not None]


def render_poster(db: Session, poster: QrPoster) -> bytes:
    labels = [f"{d.document_type}: {d.title} v{d.version}" for d in poster_documents(db, poster)]
    return create_poster_pdf(
        title="Scan for current documents",
        location_name=poster.location_name,
        poster_type=poster.poster_type,
        qr_data=poster_url(poster),
        documents=labels,
        project_name=poster.project.name if poster.project else None,
    )


# =====================
# Exports
# =====================

def _export_filters(export_type: str, scope: dict) -> dict:
    def ids(key):
        try:
            return [uuid.UUID(str(v)) for v in scope.get(key) or []]
        except ValueError:
            raise ValidationError(f"'{key}' must contain ids")

    filters = {"project_ids": ids("project_ids"), "operative_ids": ids("operative_ids"), "plot_ids": ids("plot_ids")}
    required = {"project": "project_ids", "operative": "operative_ids", "plot": "plot_ids"}.get(export_type)
    if required and not filters[required]:
        raise ValidationError(f"A {export_type} export needs at least one id in '{required}'")
    return filters


def _export_rows(db: Session, filters: dict, date_from: Optional[date], date_to: Optional[date]) -> List[dict]:
    rows = get_evidence_chain_report(db, date_from=date_from, date_to=date_to)
    if filters["project_ids"]:
        wanted = {str(i) for i in filters["project_ids"]}
        rows = [r for r in rows if r["project_id"] in wanted]
    if filters["operative_ids"]:
        wanted = {str(i) for i in filters["operative_ids"]}
        rows = [r for r in rows if r["operative_id"] in wanted]
    if filters["plot_ids"]:
        wanted = {str(i) for i in filters["plot_ids"]}
        rows = [r for r in rows if r["plot_id"] in wanted]
    return rows


def _parse_date(value) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Invalid date '{value}'")


def create_export(
    db: Session,
    storage: StorageProvider,
    user: User,
    export_type: str,
    export_format: str,
    scope: Optional[dict] = None,
) -> EvidenceExport:
    """
    Build an evidence export file and store it.

    The export row is written as processing first so a failure leaves a
    failed row behind rather than nothing.
    """
    if export_type not in EXPORT_TYPES:
        raise ValidationError(f"Export type must be one of {', '.join(EXPORT_TYPES)}")
    if export_format not in EXPORT_FORMATS:
        raise ValidationError(f"Export format must be one of {', '.join(EXPORT_FORMATS)}")
    scope = scope or {}
    filters = _export_filters(export_type, scope)
    date_from, date_to = _parse_date(scope.get("date_from")), _parse_date(scope.get("date_to"))
    if date_from and date_to and date_to < date_from:
        raise ValidationError("date_to cannot be before date_from")

    export = EvidenceExport(
        export_type=export_type,
        export_format=export_format,
        scope=json.loads(json.dumps(scope, default=str)),
        status="processing",
        created_by=user.id,
    )
    db.add(export)
    db.commit()

    rows = _export_rows(db, filters, date_from, date_to)
    if export_format == "csv":
        content = report_csv(rows).encode("utf-8")
    elif export_format == "json":
        content = json.dumps({"export_id": str(export.id), "records": rows}, indent=2).encode("utf-8")
    else:
        content = create_table_report_pdf(
            "Evidence Chain Export",
            f"{export_type.title()} export, {len(rows)} record(s)",
            REPORT_HEADERS,
            [_report_row(r) for r in rows],
        )

    key = f"evidence_exports/{export.id}.{export_format}"
    try:
        storage.save(key, content)
    except OSError as e:
        export.status = "failed"
        export.error_message = str(e)
        db.commit()
        log.error("evidence_export_failed", export_id=str(export.id), error=str(e))
        raise

    export.status = "completed"
    export.record_count = len(rows)
    export.file_key = key
    export.completed_at = utcnow()
    record_action(db, user, "evidence_export", export.id, "EXPORT", context={"type": export_type, "format": export_format, "records": len(rows)})
    db.commit()
    db.refresh(export)
    log.info("evidence_exported", export_id=str(export.id), records=len(rows), format=export_format)
    return export


def get_export(db: Session, export_id: uuid.UUID) -> EvidenceExport:
    export = db.get(EvidenceExport, export_id)
    if not export:
        raise NotFoundError("Evidence export", export_id)
    return export


def list_exports(db: Session, limit: int = 50) -> List[EvidenceExport]:
    return db.query(EvidenceExport).order_by(EvidenceExport.created_at.desc()).limit(limit).all()
