from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ProgramBase(BaseModel):
    title: str = Field(min_length=1)
    total_weeks: int | None = Field(default=None, ge=1)
    description: str | None = None


class ProgramCreate(ProgramBase):
    pass


class ProgramOut(ProgramBase):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    archived_at: datetime | None = None
    lifecycle: str
    created_at: datetime
