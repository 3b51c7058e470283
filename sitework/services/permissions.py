"""
Role and permission helpers for site operations.
"""
from typing import Dict, List, Optional
from sqlalchemy.orm import Session

from ..models.models import User, Role


ROLE_HIERARCHY: Dict[str, int] = {
    "operative": 1,
    "supervisor": 2,
    "pm": 3,
    "admin": 4,
    "dpo": 5,
    "director": 5,
}

ADMIN_ROLES = {"admin", "dpo"}
MANAGEMENT_ROLES = {"admin", "dpo", "director", "pm"}
SUPERVISOR_ROLES = {"supervisor", "pm", "admin", "director"}

_SUPERVISOR_PERMS = {
    "compliance:read": True,
    "timesheets:approve": True,
    "deliveries:manage": True,
    "hire:manage": True,
    "evidence:read": True,
    "signatures:read": True,
    "documents:write": True,
}

_PM_PERMS = {
    **_SUPERVISOR_PERMS,
    "projects:write": True,
    "compliance:review": True,
    "evidence:export": True,
    "users:read": True,
}

DEFAULT_ROLE_PERMISSIONS: Dict[str, dict] = {
    "operative": {},
    "supervisor": _SUPERVISOR_PERMS,
    "pm": _PM_PERMS,
    "admin": {},  # bypasses every check
    "dpo": {
        "retention:manage": True,
        "audit:read": True,
        "users:read": True,
        "compliance:read": True,
        "evidence:read": True,
        "evidence:export": True,
        "signatures:read": True,
    },
    "director": {
        **_PM_PERMS,
        "payroll:export": True,
        "audit:read": True,
    },
}

ROLE_DESCRIPTIONS = {
    "operative": "Site operative",
    "supervisor": "Site supervisor",
    "pm": "Project manager",
    "admin": "System administrator",
    "dpo": "Data protection officer",
    "director": "Company director",
}


def role_names(user: User) -> List[str]:
    return [r.name for r in (user.roles or [])]


def role_level(role: Optional[str]) -> int:
    return ROLE_HIERARCHY.get((role or "").lower(), 0)


def primary_role(user: User) -> str:
    """Highest-ranked role held by the user; operative when none."""
    names = role_names(user)
    if not names:
        return "operative"
    return max(names, key=role_level)


def is_admin(user: User) -> bool:
    return any(name in ADMIN_ROLES for name in role_names(user))


def is_management(user: User) -> bool:
    return any(name in MANAGEMENT_ROLES for name in role_names(user))


def is_supervisor(user: User) -> bool:
    return any(name in SUPERVISOR_ROLES for name in role_names(user))


def get_permission_map(user: User) -> dict:
    """Combined permission map from roles and user overrides"""
    perm_map: dict = {}
    for r in user.roles or []:
        if r.permissions:
            perm_map.update(r.permissions)
    if user.permissions_override:
        perm_map.update(user.permissions_override)
    return perm_map


def has_permission(user: User, perm: str) -> bool:
    if "admin" in role_names(user):
        return True
    return bool(get_permission_map(user).get(perm))


def get_role(db: Session, name: str) -> Optional[Role]:
    return db.query(Role).filter(Role.name == name).first()


def ensure_default_roles(db: Session) -> List[Role]:
    """Create the built-in roles if missing. Existing permission maps are left alone."""
    roles = []
    for name, perms in DEFAULT_ROLE_PERMISSIONS.items():
        role = get_role(db, name)
        if role is None:
            role = Role(name=name, description=ROLE_DESCRIPTIONS.get(name), permissions=dict(perms))
            db.add(role)
        roles.append(role)
    db.flush()
    return roles
