import os
from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..db import get_db
from ..models.models import User
from ..schemas.documents import AccessEvent, DocumentResponse
from ..services import documents as document_service
from ..storage.local_provider import get_storage
from ..storage.provider import StorageProvider


router = APIRouter(prefix="/documents", tags=["documents"])


def _device(request: Request) -> dict:
    return {
        "user_agent": request.headers.get("user-agent"),
        "ip": request.client.host if request.client else None,
    }


@router.post("", response_model=DocumentResponse, status_code=201)
async def upload_document(
    request: Request,
    project_id: uuid.UUID = Form(...),
    document_type: str = Form(...),
    title: str = Form(...),
    version: str = Form(...),
    revision: Optional[str] = Form(None),
    plot_id: Optional[uuid.UUID] = Form(None),
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    user: User = Depends(require_permissions("documents:write")),
):
    """
    Upload a document version. An existing current version with the same
    title and type is superseded.
    """
    upload = None
    if file is not None:
        upload = (file.filename, file.content_type, await file.read())
    data = {
        "project_id": project_id,
        "document_type": document_type,
        "title": title,
        "version": version,
        "revision": revision or None,
        "plot_id": plot_id,
    }
    return document_service.upload_document(db, storage, user, data, upload, device_info=_device(request))


@router.get("", response_model=List[DocumentResponse])
def list_documents(
    project_id: Optional[uuid.UUID] = None,
    document_type: Optional[str] = None,
    plot_id: Optional[uuid.UUID] = None,
    current_only: bool = True,
    q: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    return document_service.list_documents(
        db, project_id=project_id, document_type=document_type, plot_id=plot_id,
        current_only=current_only, search=q,
    )


@router.get("/{document_id}", response_model=DocumentResponse)
def get_document(document_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return document_service.get_document(db, document_id)


@router.get("/{document_id}/versions", response_model=List[DocumentResponse])
def version_history(document_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return document_service.version_history(db, document_service.get_document(db, document_id))


@router.post("/{document_id}/access")
def record_access(
    document_id: uuid.UUID,
    req: AccessEvent,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Log a view or print of a document to the evidence chain."""
    document = document_service.get_document(db, document_id)
    document_service.record_access(db, user, document, req.action, req.device_info or _device(request))
    return {"status": "ok", "is_current": document.is_current}


@router.get("/{document_id}/file")
def download_file(
    document_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    user: User = Depends(get_current_user),
):
    document = document_service.get_document(db, document_id)
    content = document_service.read_file(storage, document)
    document_service.record_access(db, user, document, "download", _device(request))
    ext = os.path.splitext(document.file_key)[1]
    filename = f"{document.title} v{document.version}{ext}".replace('"', "")
    return Response(
        content=content,
        media_type=document.content_type or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
