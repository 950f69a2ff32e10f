from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from core.config import settings
from core.database import ENGINE
from core.security import hash_password
import models  # noqa: F401  (registers every table on Base.metadata)
from models.base import Base
from models.user import User, UserRole


logger = logging.getLogger(__name__)


def _seed_admin_if_configured(db: Session) -> None:
    username = settings.seed_admin_username
    password = settings.seed_admin_password
    if not username or not password:
        return

    existing = db.execute(select(User.id).where(func.lower(User.username) == func.lower(username))).first()
    if existing is not None:
        return

    user = User(username=username, password_hash=hash_password(password), is_active=True)
    user.roles.append(UserRole(role="admin"))
    db.add(user)
    db.commit()
    logger.info("Seeded admin user username=%r", username)


def bootstrap_schema(engine: Engine | None = None) -> None:
    """Create missing tables and seed the configured admin. Safe on every startup."""

    engine = engine or ENGINE
    Base.metadata.create_all(bind=engine)
    with Session(engine) as db:
        _seed_admin_if_configured(db)
