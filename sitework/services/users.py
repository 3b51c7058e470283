"""
Admin user management: accounts, roles, employment status and provisional access.
"""
import csv
import io
import uuid
from typing import List, Optional

import structlog
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..auth.security import get_password_hash
from ..errors import ConflictError, InvalidTransition, NotFoundError, ValidationError
from ..models.models import Project, Role, User, user_roles
from .audit import compute_diff, record_action
from .permissions import ROLE_HIERARCHY, get_permission_map, primary_role, role_names
from .soft_delete import restore, soft_delete
from .validation import is_valid_phone, sanitize_input

log = structlog.get_logger(__name__)

ACTIVATION_STATUSES = ("provisional", "active", "pending", "inactive")
USERS_CSV_HEADERS = ["Name", "Email", "Phone", "Role", "Status", "Active", "Current Project", "Created", "Deleted"]


def user_to_dict(u: User) -> dict:
    return {
        "id": str(u.id),
        "email": u.email,
        "first_name": u.first_name,
        "last_name": u.last_name,
        "name": u.full_name,
        "phone": u.phone,
        "role": primary_role(u),
        "roles": role_names(u),
        "is_active": u.is_active,
        "activation_status": u.activation_status,
        "preferred_language": u.preferred_language,
        "current_project_id": str(u.current_project_id) if u.current_project_id else None,
        "current_project": u.current_project.name if u.current_project else None,
        "created_at": u.created_at.isoformat() if u.created_at else None,
        "last_login_at": u.last_login_at.isoformat() if u.last_login_at else None,
        "deleted_at": u.deleted_at.isoformat() if u.deleted_at else None,
    }


def me_dict(u: User) -> dict:
    data = user_to_dict(u)
    data["permissions"] = sorted(k for k, v in get_permission_map(u).items() if v)
    return data


def get_user(db: Session, user_id: uuid.UUID, include_deleted: bool = True) -> User:
    user = db.get(User, user_id)
    if not user or (not include_deleted and user.deleted_at is not None):
        raise NotFoundError("User", user_id)
    return user


def _filtered_query(
    db: Session,
    search: Optional[str] = None,
    role: Optional[str] = None,
    status: Optional[str] = None,
    include_deleted: bool = False,
    project_id: Optional[uuid.UUID] = None,
):
    query = db.query(User)
    if not include_deleted:
        query = query.filter(User.deleted_at.is_(None))
    if search:
        like = f"%{search.strip().lower()}%"
        query = query.filter(or_(
            func.lower(User.first_name).like(like),
            func.lower(User.last_name).like(like),
            func.lower(User.first_name + " " + User.last_name).like(like),
            func.lower(User.email).like(like),
        ))
    if role:
        query = query.join(user_roles, user_roles.c.user_id == User.id).join(Role, Role.id == user_roles.c.role_id)
        query = query.filter(Role.name == role)
    if status == "active":
        query = query.filter(User.is_active.is_(True))
    elif status == "inactive":
        query = query.filter(User.is_active.is_(False))
    elif status:
        query = query.filter(User.activation_status == status)
    if project_id:
        query = query.filter(or_(User.current_project_id == project_id, User.projects.any(Project.id == project_id)))
    return query


def list_users(
    db: Session,
    search: Optional[str] = None,
    role: Optional[str] = None,
    status: Optional[str] = None,
    include_deleted: bool = False,
    project_id: Optional[uuid.UUID] = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    """
    Page through users.

    Args:
        search: Matches first name, last name, full name or email (case-insensitive)
        role: Role name
        status: active|inactive employment, or an activation status
        include_deleted: Include soft-deleted users
        page: Page number (1-indexed)
        limit: Items per page (max 200)
    """
    limit = min(max(1, limit), 200)
    page = max(1, page)
    query = _filtered_query(db, search, role, status, include_deleted, project_id)
    total = query.count()
    rows = query.order_by(User.last_name, User.first_name).offset((page - 1) * limit).limit(limit).all()
    return {
        "items": [user_to_dict(u) for u in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit if limit > 0 else 0,
    }


def export_users_csv(db: Session, **filters) -> str:
    users = _filtered_query(db, **filters).order_by(User.last_name, User.first_name).all()
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(USERS_CSV_HEADERS)
    for u in users:
        writer.writerow([
            u.full_name, u.email, u.phone or "", primary_role(u), u.activation_status,
            "Yes" if u.is_active else "No", u.current_project.name if u.current_project else "",
            u.created_at.date().isoformat() if u.created_at else "",
            u.deleted_at.date().isoformat() if u.deleted_at else "",
        ])
    return buf.getvalue()


def _role(db: Session, name: str) -> Role:
    if name not in ROLE_HIERARCHY:
        raise ValidationError(f"Unknown role '{name}'")
    role = db.query(Role).filter(Role.name == name).first()
    if role is None:
        raise NotFoundError("Role", name)
    return role


def _check_phone(phone: Optional[str]) -> Optional[str]:
    if phone is None:
        return None
    phone = phone.strip()
    if phone and not is_valid_phone(phone):
        raise ValidationError("Phone number may only contain digits, spaces, +, - and brackets")
    return phone or None


def _check_project(db: Session, project_id: Optional[uuid.UUID]) -> None:
    if project_id:
        project = db.get(Project, project_id)
        if project is None or project.deleted_at is not None:
            raise NotFoundError("Project", project_id)


def create_user(db: Session, actor: Optional[User], data: dict) -> User:
    email = data["email"].strip().lower()
    if db.query(User.id).filter(func.lower(User.email) == email).first():
        raise ConflictError("A user with this email already exists")
    status = data.get("activation_status") or "active"
    if status not in ACTIVATION_STATUSES:
        raise ValidationError(f"Activation status must be one of {', '.join(ACTIVATION_STATUSES)}")
    first_name = sanitize_input(data.get("first_name"))
    last_name = sanitize_input(data.get("last_name"))
    if not first_name or not last_name:
        raise ValidationError("First and last name are required")
    _check_project(db, data.get("current_project_id"))

    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        phone=_check_phone(data.get("phone")),
        password_hash=get_password_hash(data["password"]),
        activation_status=status,
        is_active=status != "inactive",
        preferred_language=data.get("preferred_language") or "en",
        current_project_id=data.get("current_project_id"),
    )
    user.roles = [_role(db, data.get("role") or "operative")]
    db.add(user)
    db.flush()
    record_action(db, actor, "user", user.id, "CREATE", context={"email": email, "role": data.get("role") or "operative"})
    db.commit()
    db.refresh(user)
    log.info("user_created", user_id=str(user.id), status=status)
    return user


def update_user(db: Session, actor: User, user: User, data: dict) -> User:
    before = user_to_dict(user)
    if data.get("first_name") is not None:
        user.first_name = sanitize_input(data["first_name"]) or user.first_name
    if data.get("last_name") is not None:
        user.last_name = sanitize_input(data["last_name"]) or user.last_name
    if "phone" in data and data["phone"] is not None:
        user.phone = _check_phone(data["phone"])
    if data.get("preferred_language") is not None:
        user.preferred_language = data["preferred_language"]
    if "current_project_id" in data and data["current_project_id"] is not None:
        _check_project(db, data["current_project_id"])
        user.current_project_id = data["current_project_id"]
    db.flush()
    diff = compute_diff(before, user_to_dict(user))
    if diff:
        record_action(db, actor, "user", user.id, "UPDATE", changes=diff)
    db.commit()
    db.refresh(user)
    return user


def change_role(db: Session, actor: User, user: User, role_name: str) -> User:
    previous = primary_role(user)
    user.roles = [_role(db, role_name)]
    record_action(db, actor, "user", user.id, "ROLE_CHANGE", changes={"role": {"before": previous, "after": role_name}})
    db.commit()
    db.refresh(user)
    log.info("user_role_changed", user_id=str(user.id), role=role_name)
    return user


def set_employment_status(db: Session, actor: User, user: User, active: bool) -> User:
    """Switch a user between active and inactive employment."""
    if user.id == actor.id and not active:
        raise ValidationError("You cannot deactivate your own account")
    if user.deleted_at is not None:
        raise InvalidTransition("user", "deleted", "active" if active else "inactive")
    before = user.is_active
    user.is_active = active
    if active and user.activation_status == "inactive":
        user.activation_status = "active"
    elif not active:
        user.activation_status = "inactive"
    record_action(db, actor, "user", user.id, "STATUS_CHANGE", changes={"is_active": {"before": before, "after": active}})
    db.commit()
    db.refresh(user)
    return user


def activate_user(db: Session, actor: User, user: User) -> User:
    if user.activation_status not in ("provisional", "pending"):
        raise InvalidTransition("user", user.activation_status, "active")
    previous = user.activation_status
    user.activation_status = "active"
    user.is_active = True
    record_action(db, actor, "user", user.id, "ACTIVATE", changes={"activation_status": {"before": previous, "after": "active"}})
    db.commit()
    db.refresh(user)
    return user


def delete_user(db: Session, actor: User, user: User, reason: Optional[str] = None) -> User:
    if user.id == actor.id:
        raise ValidationError("You cannot delete your own account")
    soft_delete(db, user, "user", actor, reason)
    user.is_active = False
    db.commit()
    db.refresh(user)
    return user


def restore_user(db: Session, actor: User, user: User) -> User:
    restore(db, user, "user", actor)
    user.is_active = user.activation_status != "inactive"
    db.commit()
    db.refresh(user)
    return user


def list_roles(db: Session) -> List[Role]:
    return sorted(db.query(Role).all(), key=lambda r: (ROLE_HIERARCHY.get(r.name, 0), r.name))
