import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, List

import bcrypt
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import User, utcnow
from ..services.permissions import has_permission, role_names


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    # Accounts migrated from the hosted auth provider keep their bcrypt ($2a$/$2b$/$2y$) hashes
    if hashed.startswith(("$2a$", "$2b$", "$2y$")):
        pb = plain.encode("utf-8")[:72]
        try:
            return bcrypt.checkpw(pb, hashed.encode("utf-8"))
        except ValueError:
            return False
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        return False


def _create_token(sub: str, ttl_seconds: int, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: str, roles: Optional[List[str]] = None) -> str:
    return _create_token(user_id, settings.jwt_ttl_seconds, extra={"roles": roles or []})


def create_refresh_token(user_id: str) -> str:
    return _create_token(user_id, settings.refresh_ttl_seconds, extra={"type": "refresh"})


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def provisional_access_open(user: User, now: Optional[datetime] = None) -> bool:
    """Provisional accounts may sign in for a limited window after creation."""
    if user.activation_status != "provisional":
        return True
    now = now or utcnow()
    return now <= user.created_at + timedelta(hours=settings.provisional_access_hours)


def ensure_account_usable(user: User) -> None:
    """Raise 403 for accounts that may not hold a session right now."""
    if user.deleted_at is not None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is inactive")
    if user.activation_status == "pending":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is awaiting activation")
    if not provisional_access_open(user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Provisional access has expired; ask an administrator to activate your account",
        )


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
):
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    payload = decode_token(creds.credentials)
    if payload.get("type") == "refresh":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type")
    try:
        user_uuid = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject")
    user = db.query(User).filter(User.id == user_uuid, User.deleted_at.is_(None)).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not active")
    ensure_account_usable(user)
    return user


def require_roles(*allowed_roles: str):
    """Require the user to hold at least one of the given roles."""
    def _dep(user: User = Depends(get_current_user)):
        if not set(allowed_roles) & set(role_names(user)):
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return _dep


def require_permissions(*required_permissions: str):
    """
    Require at least one of the specified permissions (OR logic).
    The admin role bypasses the check.
    """
    def _dep(user: User = Depends(get_current_user)):
        if not any(has_permission(user, perm) for perm in required_permissions):
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return _dep
