from __future__ import annotations

import logging
import time
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from api.deps import get_current_user
from core.config import settings
from core.database import get_db
from core.security import create_access_token, verify_password
from models.user import User
from schemas.auth import LoginRequest, LoginResponse, MeResponse
from services.authorization import AuthenticatedUser, managed_program_ids


router = APIRouter()

logger = logging.getLogger(__name__)


# Simple in-memory rate limiting for login.
# NOTE: In multi-worker deployments this is per-worker.
_LOGIN_WINDOW_SECONDS = 60
_LOGIN_MAX_ATTEMPTS_PER_KEY = 12
_login_attempts: dict[str, list[float]] = {}


def _rate_limit_key(request: Request, username: str) -> str:
    ip = request.client.host if request.client else "unknown"
    return f"{ip}:{username.lower().strip()}"


def _enforce_login_rate_limit(request: Request, username: str) -> None:
    key = _rate_limit_key(request, username)
    now = time.time()
    history = [t for t in _login_attempts.get(key, []) if now - t < _LOGIN_WINDOW_SECONDS]
    history.append(now)
    _login_attempts[key] = history
    if len(history) > _LOGIN_MAX_ATTEMPTS_PER_KEY:
        raise HTTPException(status_code=429, detail="rate_limited")


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> LoginResponse:
    username = payload.username.strip()
    _enforce_login_rate_limit(request, username)
    ip = request.client.host if request.client else "unknown"

    user = db.execute(select(User).where(func.lower(User.username) == func.lower(username))).scalar_one_or_none()
    if user is None:
        logger.warning("Login failed (unknown user) ip=%s username=%r", ip, username)
        raise HTTPException(status_code=401, detail="invalid_credentials")
    if not user.is_active:
        logger.warning("Login failed (disabled user) ip=%s username=%r", ip, username)
        raise HTTPException(status_code=403, detail="user_disabled")

    password = payload.password
    password_ok = verify_password(password, user.password_hash)
    if not password_ok and password != password.strip():
        # Copy/paste often adds a trailing newline or space.
        password_ok = verify_password(password.strip(), user.password_hash)
    if not password_ok:
        logger.warning("Login failed (bad password) ip=%s username=%r", ip, username)
        raise HTTPException(status_code=401, detail="invalid_credentials")

    token = create_access_token(user_id=str(user.id), username=user.username, roles=list(user.role_keys))

    samesite = settings.cookie_samesite
    if samesite not in {"lax", "strict", "none"}:
        raise HTTPException(status_code=500, detail="invalid_cookie_samesite")
    response.set_cookie(
        key="access_token",
        value=token,
        httponly=True,
        secure=settings.environment.lower() == "production",
        samesite=samesite,
        max_age=settings.access_token_expire_minutes * 60,
        path="/",
    )
    logger.info("Login success ip=%s username=%r", ip, user.username)
    return LoginResponse(ok=True, access_token=token)


@router.post("/logout")
def logout(response: Response) -> dict[str, Any]:
    response.delete_cookie(key="access_token", path="/")
    return {"ok": True}


@router.get("/me", response_model=MeResponse)
def me(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> MeResponse:
    return MeResponse(
        id=current_user.id,
        username=current_user.username,
        roles=sorted(current_user.roles),
        managed_program_ids=managed_program_ids(db, current_user),
    )
