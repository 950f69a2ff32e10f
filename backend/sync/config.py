from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.config import BACKEND_DIR


class SyncSettings(BaseSettings):
    """Client-side queue tuning. Read from TEMPLATE_SYNC_* variables."""

    model_config = SettingsConfigDict(
        env_prefix="TEMPLATE_SYNC_",
        env_file=BACKEND_DIR / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    base_url: str = "http://localhost:8000"
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    # Debounce windows.
    attach_delay_seconds: float = Field(default=0.6, ge=0)
    metadata_delay_seconds: float = Field(default=0.6, ge=0)
    reorder_delay_seconds: float = Field(default=0.4, ge=0)
