"""Admin sync request/response schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class SyncStatusResponse(BaseModel):
    """Persisted state of the current or last sync."""

    status: str = "idle"
    phase: str | None = None
    last_synced_at: datetime | None = None
    last_sync_count: int = 0
    error_message: str | None = None
    total_files: int = 0
    processed_files: int = 0
    current_batch: int = 0
    total_batches: int = 0
    errors: list[str] = Field(default_factory=list)
    started_at: datetime | None = None
    updated_at: datetime | None = None


class SyncStartRequest(BaseModel):
    """Request to start a sync, optionally restricted to a tag filter."""

    tags: list[str] | None = Field(default=None, max_length=50)

    @field_validator("tags")
    @classmethod
    def _strip_tags(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        tags = [tag.strip() for tag in value if tag.strip()]
        return tags or None


class SyncStartResponse(BaseModel):
    message: str
    tags: list[str]


class SyncMessageResponse(BaseModel):
    message: str
