from __future__ import annotations

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from models.base import Base


TEMPLATE_STATUSES = ("draft", "published", "deprecated", "archived")


class Template(Base):
    __tablename__ = "templates"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    week_number = Column(Integer, nullable=True)
    label = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    sort_order = Column(Integer, nullable=True)
    status = Column(Text, nullable=False, default="draft")
    external_link = Column(Text, nullable=True)

    # Descriptive metadata.
    organization = Column(Text, nullable=True)
    sub_unit = Column(Text, nullable=True)
    discipline_type = Column(Text, nullable=True)
    delivery_type = Column(Text, nullable=True)

    # Legacy defaults, still merged into link views.
    due_offset_days = Column(Integer, nullable=True)
    required = Column(Boolean, nullable=True)
    visibility = Column(Text, nullable=True)

    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "status in ('draft', 'published', 'deprecated', 'archived')",
            name="ck_templates_status",
        ),
    )

    @property
    def is_archived(self) -> bool:
        return self.deleted_at is not None or self.status == "archived"
