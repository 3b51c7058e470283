"""
Controlled project documents and version supersession.
"""
import os
import uuid
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import Document, Plot, Project, User, utcnow
from ..storage.provider import StorageProvider
from .audit import record_action
from .evidence import DOCUMENT_TYPES, log_event
from .signatures import supersede_signatures_for
from .validation import is_valid_rams_version, sanitize_input, validate_upload

log = structlog.get_logger(__name__)

ACCESS_ACTIONS = ("view", "download", "print")


def current_version(db: Session, project_id: uuid.UUID, title: str, document_type: str) -> Optional[Document]:
    return (
        db.query(Document)
        .filter(
            Document.project_id == project_id,
            Document.title == title,
            Document.document_type == document_type,
            Document.is_current.is_(True),
        )
        .first()
    )


def upload_document(
    db: Session,
    storage: StorageProvider,
    user: User,
    data: dict,
    file: Optional[Tuple[str, str, bytes]] = None,
    device_info: Optional[dict] = None,
) -> Document:
    """
    Store a document version, superseding the current version with the same
    title and type.

    Args:
        db: Database session
        storage: Where file content goes
        user: Uploader
        data: project_id, document_type, title, version and optional revision, plot_id
        file: (filename, content_type, content) when a file is attached
    """
    project = db.get(Project, data["project_id"])
    if project is None or project.deleted_at is not None:
        raise NotFoundError("Project", data["project_id"])
    document_type = data.get("document_type")
    if document_type not in DOCUMENT_TYPES:
        raise ValidationError(f"Document type must be one of {', '.join(DOCUMENT_TYPES)}")
    title = sanitize_input(data.get("title"))
    if not title:
        raise ValidationError("Title is required")
    version = (data.get("version") or "").strip()
    if not version:
        raise ValidationError("Version is required")
    if document_type == "RAMS" and not is_valid_rams_version(version):
        raise ValidationError("RAMS version must look like 1.0", code="RAMS_VERSION")
    plot_id = data.get("plot_id")
    if plot_id:
        plot = db.get(Plot, plot_id)
        if plot is None or plot.project_id != project.id:
            raise ValidationError("Plot does not belong to this project")

    previous = current_version(db, project.id, title, document_type)
    if previous is not None and previous.version == version and previous.revision == data.get("revision"):
        raise ConflictError(f"{title} v{version} already exists")

    document = Document(
        project_id=project.id,
        plot_id=plot_id,
        document_type=document_type,
        title=title,
        version=version,
        revision=data.get("revision"),
        is_current=True,
        uploaded_by=user.id,
    )
    db.add(document)
    db.flush()

    if file is not None:
        filename, content_type, content = file
        validate_upload(content_type, len(content))
        ext = os.path.splitext(filename or "")[1].lower()
        document.file_key = f"documents/{project.id}/{document.id}{ext}"
        document.content_type = content_type
        storage.save(document.file_key, content)

    if previous is not None:
        previous.is_current = False
        previous.superseded_by_id = document.id
        previous.superseded_at = utcnow()
        flagged = supersede_signatures_for(db, previous)
        log_event(
            db,
            project_id=project.id,
            action_type="supersede",
            document_type=document_type,
            operative_id=user.id,
            document=previous,
            device_info=device_info,
            metadata={"superseded_by": str(document.id), "new_version": version, "signatures_superseded": flagged},
        )
        log.info("document_superseded", document_id=str(previous.id), new_version=version, signatures=flagged)

    log_event(
        db,
        project_id=project.id,
        action_type="upload",
        document_type=document_type,
        operative_id=user.id,
        document=document,
        device_info=device_info,
        metadata={"supersedes": str(previous.id) if previous else None},
    )
    record_action(db, user, "document", document.id, "UPLOAD", context={"title": title, "version": version})
    db.commit()
    db.refresh(document)
    return document


def get_document(db: Session, document_id: uuid.UUID) -> Document:
    document = db.get(Document, document_id)
    if not document:
        raise NotFoundError("Document", document_id)
    return document


def list_documents(
    db: Session,
    project_id: Optional[uuid.UUID] = None,
    document_type: Optional[str] = None,
    plot_id: Optional[uuid.UUID] = None,
    current_only: bool = True,
    search: Optional[str] = None,
) -> List[Document]:
    query = db.query(Document)
    if project_id:
        query = query.filter(Document.project_id == project_id)
    if document_type:
        query = query.filter(Document.document_type == document_type)
    if plot_id:
        query = query.filter(Document.plot_id == plot_id)
    if current_only:
        query = query.filter(Document.is_current.is_(True))
    if search:
        query = query.filter(Document.title.ilike(f"%{search.strip()}%"))
    return query.order_by(Document.title, Document.created_at.desc()).all()


def version_history(db: Session, document: Document) -> List[Document]:
    return (
        db.query(Document)
        .filter(
            Document.project_id == document.project_id,
            Document.title == document.title,
            Document.document_type == document.document_type,
        )
        .order_by(Document.created_at.desc())
        .all()
    )


def record_access(
    db: Session,
    user: User,
    document: Document,
    action: str,
    device_info: Optional[dict] = None,
) -> None:
    """Log a view, download or print of ``document`` to the evidence chain."""
    if action not in ACCESS_ACTIONS:
        raise ValidationError(f"Access action must be one of {', '.join(ACCESS_ACTIONS)}")
    log_event(
        db,
        project_id=document.project_id,
        action_type=action,
        document_type=document.document_type,
        operative_id=user.id,
        document=document,
        device_info=device_info,
        metadata={"is_current": document.is_current},
    )
    db.commit()


def read_file(storage: StorageProvider, document: Document) -> bytes:
    if not document.file_key or not storage.exists(document.file_key):
        raise NotFoundError("Document file")
    return storage.open(document.file_key)
