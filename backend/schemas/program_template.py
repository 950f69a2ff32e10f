from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel


class TemplateOut(BaseModel):
    template_id: uuid.UUID
    label: str
    week_number: int | None = None
    notes: str | None = None
    hyperlink: str | None = None
    sort_order: int | None = None
    status: str
    organization: str | None = None
    sub_unit: str | None = None
    discipline_type: str | None = None
    delivery_type: str | None = None
    # Deprecated: legacy override fields, kept for older clients.
    due_offset_days: int | None = None
    required: bool | None = None
    visibility: str | None = None
    archived: bool = False
    deleted_at: datetime | None = None


class TemplateLinkOut(TemplateOut):
    """Effective view of a template inside one program (overrides merged over defaults)."""

    link_id: uuid.UUID
    program_id: uuid.UUID
    visible: bool = True
    linked_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: uuid.UUID | None = None
    updated_by: uuid.UUID | None = None


class PageMeta(BaseModel):
    total: int
    limit: int
    offset: int


class ProgramTemplatesPage(BaseModel):
    data: list[TemplateLinkOut]
    available: list[TemplateOut]
    meta: PageMeta


class AttachResponse(BaseModel):
    attached: bool = True
    alreadyAttached: bool
    template: TemplateLinkOut


class DetachResponse(BaseModel):
    detached: bool = True
    wasAttached: bool


class MetadataUpdateResponse(BaseModel):
    updated: bool
    template: TemplateLinkOut


class ReorderResponse(BaseModel):
    updated: int


class TemplateProgramOut(BaseModel):
    program_id: uuid.UUID
    title: str
    archived_at: datetime | None = None
    link_id: uuid.UUID
    linked_at: datetime | None = None


class TemplateProgramsPage(BaseModel):
    data: list[TemplateProgramOut]
    meta: PageMeta


class TemplatesPage(BaseModel):
    data: list[TemplateOut]
    meta: PageMeta
