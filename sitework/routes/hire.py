from typing import Optional
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..db import get_db
from ..models.models import User
from ..schemas.hire import (
    DraftRequest,
    HireItemCreate,
    HireItemUpdate,
    HireRequestCreate,
    HireRequestDecision,
)
from ..services import hire
from ..services.time_rules import local_today


router = APIRouter(prefix="/hire", tags=["hire"])


@router.get("/items")
def list_items(
    project_id: Optional[uuid.UUID] = None,
    q: Optional[str] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    """On-hire items with stats over the whole project list."""
    today = local_today()
    items = hire.list_items(db, today, project_id=project_id)
    filtered = hire.list_items(db, today, project_id=project_id, search=q, status=status) if (q or status) else items
    return {
        "items": [hire.item_to_dict(i, today) for i in filtered],
        "stats": hire.hire_stats(items, today),
    }


@router.post("/items", status_code=201)
def create_item(
    req: HireItemCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hire:manage")),
):
    return hire.item_to_dict(hire.create_item(db, user, req.model_dump()), local_today())


@router.get("/items/{item_id}")
def get_item(item_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return hire.item_to_dict(hire.get_item(db, item_id), local_today())


@router.patch("/items/{item_id}")
def update_item(
    item_id: uuid.UUID,
    req: HireItemUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hire:manage")),
):
    item = hire.update_item(db, user, hire.get_item(db, item_id), req.model_dump(exclude_unset=True))
    return hire.item_to_dict(item, local_today())


@router.post("/items/{item_id}/draft")
def draft_request(
    item_id: uuid.UUID,
    req: DraftRequest,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hire:manage")),
):
    """Preview the supplier email for a request without saving it."""
    item = hire.get_item(db, item_id)
    return {"body": hire.draft_request(item, req.request_type, req.new_end_date)}


@router.post("/items/{item_id}/requests", status_code=201)
def create_request(
    item_id: uuid.UUID,
    req: HireRequestCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hire:manage")),
):
    item = hire.get_item(db, item_id)
    created = hire.create_request(db, user, item, req.request_type, req.details, req.new_end_date, req.send)
    return hire.request_to_dict(created)


@router.post("/requests/{request_id}/decision")
def decide_request(
    request_id: uuid.UUID,
    req: HireRequestDecision,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hire:manage")),
):
    decided = hire.decide_request(db, user, hire.get_request(db, request_id), req.confirm, local_today())
    return hire.request_to_dict(decided)
