from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions, require_roles
from ..db import get_db
from ..models.models import User
from ..schemas.retention import (
    ArchiveLogResponse,
    DeletionDecision,
    DeletionRequestCreate,
    DeletionRequestResponse,
    OverrideRequest,
    RetentionRecordCreate,
    RetentionRuleResponse,
    RetentionRuleUpdate,
)
from ..services import retention
from ..services.permissions import ADMIN_ROLES
from ..services.audit import record_action
from ..services.time_rules import local_today


router = APIRouter(prefix="/retention", tags=["retention"])


# =====================
# Rules
# =====================

@router.get("/rules")
def list_rules(db: Session = Depends(get_db), _=Depends(require_permissions("retention:manage"))):
    return [
        {**RetentionRuleResponse.model_validate(r).model_dump(mode="json"), "policy": retention.policy_label(r)}
        for r in retention.list_rules(db)
    ]


@router.patch("/rules/{data_type}", response_model=RetentionRuleResponse)
def update_rule(
    data_type: str,
    req: RetentionRuleUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("retention:manage")),
):
    rule = retention.get_rule(db, data_type)
    return retention.update_rule(db, actor, rule, req.model_dump(exclude_unset=True))


# =====================
# Records
# =====================

@router.get("/records")
def list_records(
    status: Optional[str] = None,
    data_type: Optional[str] = None,
    legal_hold: Optional[bool] = None,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("retention:manage")),
):
    today = local_today()
    return {
        "items": [retention.record_to_dict(r, today) for r in retention.list_records(db, status, data_type, legal_hold)],
        "stats": retention.retention_stats(db, today),
    }


@router.post("/records", status_code=201)
def create_record(
    req: RetentionRecordCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("retention:manage")),
):
    record = retention.create_record(
        db, req.data_type, req.entity_type, req.created_on,
        subject_user_id=req.subject_user_id, entity_id=req.entity_id, description=req.description,
        data_size=req.data_size, can_request_deletion=req.can_request_deletion,
    )
    record_action(db, actor, "retention_record", record.id, "CREATE", context={"data_type": req.data_type})
    db.commit()
    db.refresh(record)
    return retention.record_to_dict(record, local_today())


@router.get("/records/upcoming")
def upcoming(db: Session = Depends(get_db), _=Depends(require_permissions("retention:manage"))):
    today = local_today()
    return [retention.record_to_dict(r, today) for r in retention.upcoming(db, today)]


@router.get("/records/{record_id}")
def get_record(record_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("retention:manage"))):
    return retention.record_to_dict(retention.get_record(db, record_id), local_today())


@router.post("/records/{record_id}/approve")
def approve_record(
    record_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("retention:manage")),
):
    record = retention.approve_record(db, actor, retention.get_record(db, record_id))
    return retention.record_to_dict(record, local_today())


@router.post("/records/{record_id}/override")
def override_record(
    record_id: uuid.UUID,
    req: OverrideRequest,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("retention:manage")),
):
    """Place a legal hold on a record."""
    record = retention.override_record(db, actor, retention.get_record(db, record_id), req.reason)
    return retention.record_to_dict(record, local_today())


@router.post("/records/{record_id}/release")
def release_hold(
    record_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("retention:manage")),
):
    record = retention.release_hold(db, actor, retention.get_record(db, record_id))
    return retention.record_to_dict(record, local_today())


@router.post("/records/{record_id}/delete")
def approve_deletion(
    record_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("retention:manage")),
):
    record = retention.approve_deletion(db, actor, retention.get_record(db, record_id))
    return retention.record_to_dict(record, local_today())


# =====================
# Processing
# =====================

@router.post("/process")
def run_processing(db: Session = Depends(get_db), actor: User = Depends(require_permissions("retention:manage"))):
    return retention.run_processing(db, local_today(), actor)


@router.get("/pending-actions")
def pending_actions(db: Session = Depends(get_db), _=Depends(require_permissions("retention:manage"))):
    return retention.pending_actions(db, local_today())


@router.get("/archive-log", response_model=List[ArchiveLogResponse])
def archive_log(
    q: Optional[str] = None,
    data_type: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 200,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("retention:manage")),
):
    return retention.archive_log(db, search=q, data_type=data_type, action=action, limit=min(max(1, limit), 1000))


# =====================
# Data subject requests
# =====================

@router.get("/my-data")
def my_data(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    today = local_today()
    return {
        "records": [retention.record_to_dict(r, today) for r in retention.my_data(db, user)],
        "requests": [
            DeletionRequestResponse.model_validate(r)
            for r in retention.list_deletion_requests(db, user_id=user.id)
        ],
    }


@router.post("/my-data/{record_id}/deletion-request", response_model=DeletionRequestResponse, status_code=201)
def request_deletion(
    record_id: uuid.UUID,
    req: DeletionRequestCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    record = retention.get_record(db, record_id)
    return retention.request_deletion(db, user, record, req.reason, local_today())


@router.get("/deletion-requests", response_model=List[DeletionRequestResponse])
def list_deletion_requests(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("retention:manage")),
):
    return retention.list_deletion_requests(db, status=status)


@router.post("/deletion-requests/{request_id}/decision", response_model=DeletionRequestResponse)
def decide_deletion_request(
    request_id: uuid.UUID,
    req: DeletionDecision,
    db: Session = Depends(get_db),
    dpo: User = Depends(require_roles(*ADMIN_ROLES)),
):
    deletion = retention.get_deletion_request(db, request_id)
    return retention.decide_deletion_request(db, dpo, deletion, req.approve, req.note)
