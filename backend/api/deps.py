from __future__ import annotations

import uuid
from typing import Callable

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from core.config import settings
from core.database import SessionLocal, get_db
from core.security import decode_token
from models.user import User
from services.audit import AuditWriter
from services.authorization import AuthenticatedUser, can, can_manage, can_read


bearer_scheme = HTTPBearer(auto_error=False)


def _extract_token(request: Request, creds: HTTPAuthorizationCredentials | None) -> str | None:
    if creds is not None and creds.credentials:
        return creds.credentials
    cookie_token = request.cookies.get("access_token")
    return cookie_token or None


def get_current_user(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> AuthenticatedUser:
    cached = getattr(request.state, "current_user", None)
    if isinstance(cached, AuthenticatedUser):
        return cached

    token = _extract_token(request, creds)
    if not token:
        raise HTTPException(status_code=401, detail="auth_required")
    try:
        payload = decode_token(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="invalid_token")

    try:
        user_uuid = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="invalid_token")

    user = db.get(User, user_uuid)
    if user is None:
        raise HTTPException(status_code=401, detail="invalid_token")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="user_disabled")

    # Roles come from the store, not the token, so revocations apply immediately.
    current = AuthenticatedUser(id=user.id, username=user.username, roles=frozenset(user.role_keys))
    request.state.current_user = current
    return current


def require_read(resource_kind: str) -> Callable[..., AuthenticatedUser]:
    def _require_read(current_user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
        if not can_read(current_user, resource_kind):
            raise HTTPException(status_code=403, detail="forbidden")
        return current_user

    return _require_read


def require_permission(action: str, resource_kind: str) -> Callable[..., AuthenticatedUser]:
    def _require_permission(current_user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
        if not can(current_user, action, resource_kind):
            raise HTTPException(status_code=403, detail="forbidden")
        return current_user

    return _require_permission


def require_program_manager(
    program_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AuthenticatedUser:
    if not can_manage(db, current_user, program_id):
        raise HTTPException(status_code=403, detail="forbidden")
    return current_user


def get_audit_writer() -> AuditWriter:
    return AuditWriter(SessionLocal, enabled=settings.audit_enabled)
