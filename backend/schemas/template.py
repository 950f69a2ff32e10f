from __future__ import annotations

from pydantic import BaseModel, Field


class TemplateCreate(BaseModel):
    label: str = Field(min_length=1)
    week_number: int | None = Field(default=None, ge=0)
    notes: str | None = None
    sort_order: int | None = None
    status: str = "draft"
    external_link: str | None = None
    organization: str | None = None
    sub_unit: str | None = None
    discipline_type: str | None = None
    delivery_type: str | None = None
