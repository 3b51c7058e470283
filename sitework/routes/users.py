from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..db import get_db
from ..models.models import User
from ..schemas.users import (
    DeleteRequest,
    EmploymentStatusChange,
    PayRateCreate,
    PayRateResponse,
    RoleChange,
    RoleResponse,
    UserCreate,
    UserPage,
    UserResponse,
    UserUpdate,
)
from ..services import payroll, users as user_service
from ..services.permissions import has_permission, is_admin
from ..services.time_rules import local_today
from .downloads import csv_response


router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=UserPage)
def list_users(
    q: Optional[str] = None,
    role: Optional[str] = None,
    status: Optional[str] = None,
    project_id: Optional[uuid.UUID] = None,
    include_deleted: bool = False,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    viewer: User = Depends(require_permissions("users:read")),
):
    """
    List users with search, role/status filters and pagination.
    Deleted accounts are only listed for admins and the DPO.
    """
    include_deleted = include_deleted and is_admin(viewer)
    return user_service.list_users(
        db, search=q, role=role, status=status, include_deleted=include_deleted,
        project_id=project_id, page=page, limit=limit,
    )


@router.get("/export")
def export_users(
    q: Optional[str] = None,
    role: Optional[str] = None,
    status: Optional[str] = None,
    include_deleted: bool = False,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("users:read")),
):
    content = user_service.export_users_csv(db, search=q, role=role, status=status, include_deleted=include_deleted)
    return csv_response(content, f"users-{local_today().isoformat()}.csv")


@router.get("/roles/all", response_model=List[RoleResponse])
def list_roles(db: Session = Depends(get_db), _=Depends(require_permissions("users:read"))):
    return user_service.list_roles(db)


@router.post("", response_model=UserResponse, status_code=201)
def create_user(
    req: UserCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("users:write")),
):
    user = user_service.create_user(db, actor, req.model_dump())
    return user_service.user_to_dict(user)


@router.get("/{user_id}", response_model=UserResponse)
def get_user(user_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("users:read"))):
    return user_service.user_to_dict(user_service.get_user(db, user_id))


@router.patch("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: uuid.UUID,
    req: UserUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("users:write")),
):
    user = user_service.get_user(db, user_id, include_deleted=False)
    user = user_service.update_user(db, actor, user, req.model_dump(exclude_unset=True))
    return user_service.user_to_dict(user)


@router.post("/{user_id}/role", response_model=UserResponse)
def change_role(
    user_id: uuid.UUID,
    req: RoleChange,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("users:write")),
):
    user = user_service.get_user(db, user_id, include_deleted=False)
    return user_service.user_to_dict(user_service.change_role(db, actor, user, req.role))


@router.post("/{user_id}/employment-status", response_model=UserResponse)
def set_employment_status(
    user_id: uuid.UUID,
    req: EmploymentStatusChange,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("users:write")),
):
    user = user_service.get_user(db, user_id)
    return user_service.user_to_dict(user_service.set_employment_status(db, actor, user, req.is_active))


@router.post("/{user_id}/activate", response_model=UserResponse)
def activate_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("users:write")),
):
    user = user_service.get_user(db, user_id, include_deleted=False)
    return user_service.user_to_dict(user_service.activate_user(db, actor, user))


@router.delete("/{user_id}", response_model=UserResponse)
def delete_user(
    user_id: uuid.UUID,
    req: Optional[DeleteRequest] = None,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("users:write")),
):
    user = user_service.get_user(db, user_id)
    reason = req.reason if req else None
    return user_service.user_to_dict(user_service.delete_user(db, actor, user, reason))


@router.post("/{user_id}/restore", response_model=UserResponse)
def restore_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("users:write")),
):
    user = user_service.get_user(db, user_id)
    return user_service.user_to_dict(user_service.restore_user(db, actor, user))


# =====================
# Pay rates
# =====================

@router.get("/{user_id}/pay-rates", response_model=List[PayRateResponse])
def list_pay_rates(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if user.id != user_id and not has_permission(user, "payroll:export"):
        raise HTTPException(status_code=403, detail="Forbidden")
    return payroll.list_rates(db, user_id)


@router.post("/{user_id}/pay-rates", response_model=PayRateResponse, status_code=201)
def add_pay_rate(
    user_id: uuid.UUID,
    req: PayRateCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("payroll:export")),
):
    user = user_service.get_user(db, user_id, include_deleted=False)
    return payroll.add_rate(db, actor, user, req.day_rate, req.hourly_rate, req.bonus_rate, req.effective_from)
