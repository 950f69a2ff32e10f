from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.program_membership import ProgramMembership


ADMIN = "admin"
MANAGER = "manager"
VIEWER = "viewer"
TRAINEE = "trainee"

ALL_ROLES = frozenset({ADMIN, MANAGER, VIEWER, TRAINEE})

# resource -> action -> roles allowed to perform it
POLICY: dict[str, dict[str, frozenset[str]]] = {
    "program": {
        "read": ALL_ROLES,
        "create": frozenset({ADMIN, MANAGER}),
        "update": frozenset({ADMIN, MANAGER}),
        "archive": frozenset({ADMIN}),
        "restore": frozenset({ADMIN}),
        "delete": frozenset({ADMIN}),
    },
    "template": {
        "read": ALL_ROLES,
        "create": frozenset({ADMIN, MANAGER}),
        "update": frozenset({ADMIN, MANAGER}),
        "delete": frozenset({ADMIN, MANAGER}),
    },
}


@dataclass(frozen=True)
class AuthenticatedUser:
    """What the identity provider hands to the gate: who, and which roles."""

    id: uuid.UUID
    username: str
    roles: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return ADMIN in self.roles


def can(user: AuthenticatedUser, action: str, resource: str) -> bool:
    if user.is_admin:
        return True
    allowed = POLICY.get(resource, {}).get(action, frozenset())
    return bool(allowed & user.roles)


def can_read(user: AuthenticatedUser, resource_kind: str) -> bool:
    return can(user, "read", resource_kind)


def can_manage(db: Session, user: AuthenticatedUser, program_id: uuid.UUID) -> bool:
    """Admins manage everything; anyone else needs a manager membership on this program."""

    if user.is_admin:
        return True
    q = (
        select(ProgramMembership.user_id)
        .where(ProgramMembership.user_id == user.id)
        .where(ProgramMembership.program_id == program_id)
        .where(ProgramMembership.role == MANAGER)
        .limit(1)
    )
    return db.execute(q).first() is not None


def managed_program_ids(db: Session, user: AuthenticatedUser) -> list[uuid.UUID]:
    """Programs the user holds a manager membership on. Admins get an empty list; they manage all."""

    if user.is_admin:
        return []
    q = (
        select(ProgramMembership.program_id)
        .where(ProgramMembership.user_id == user.id)
        .where(ProgramMembership.role == MANAGER)
        .order_by(ProgramMembership.created_at.asc())
    )
    return list(db.execute(q).scalars().all())
