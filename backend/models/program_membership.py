from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from models.base import Base


class ProgramMembership(Base):
    """Program-scoped role grant; role='manager' confers mutation rights on that program."""

    __tablename__ = "program_memberships"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    program_id = Column(UUID(as_uuid=True), ForeignKey("programs.id", ondelete="CASCADE"), primary_key=True)
    role = Column(String(20), primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
