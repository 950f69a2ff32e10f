from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from models.base import Base


# Columns on the link that shadow a template default when non-null.
OVERRIDE_FIELDS = ("notes", "external_link", "sort_order", "due_offset_days", "required", "visibility")


class ProgramTemplateLink(Base):
    __tablename__ = "program_template_links"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    program_id = Column(
        UUID(as_uuid=True),
        ForeignKey("programs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    template_id = Column(
        UUID(as_uuid=True),
        ForeignKey("templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    notes = Column(Text, nullable=True)
    external_link = Column(Text, nullable=True)
    sort_order = Column(Integer, nullable=True)
    due_offset_days = Column(Integer, nullable=True)
    required = Column(Boolean, nullable=True)
    visibility = Column(Text, nullable=True)
    visible = Column(Boolean, nullable=False, default=True)

    created_by = Column(UUID(as_uuid=True), nullable=True)
    updated_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("program_id", "template_id", name="uq_program_template_links_program_template"),
    )
