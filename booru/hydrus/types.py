"""Hydrus client API response models.

Based on https://hydrusnetwork.github.io/hydrus/developer_api.html

Remote metadata is untrusted: every shape problem (missing or null tag maps,
non-list tag entries, non-string tags, non-dict notes) is absorbed here at
parse time by falling back to an empty value, so downstream code can iterate
without guards. A record that is unusable even then (no hash, a non-integer
width) is set aside on its own instead of failing the whole response.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

# Tag status for "currently applied" in display_tags/storage_tags maps
CURRENT_TAG_STATUS = "0"
SYSTEM_TAG_PREFIX = "system:"


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


class TagServiceTags(BaseModel):
    """Tags of one tag service, keyed by status."""

    model_config = ConfigDict(extra="ignore")

    display_tags: dict[str, list[str]] = Field(default_factory=dict)

    @field_validator("display_tags", mode="before")
    @classmethod
    def _clean_display_tags(cls, value: Any) -> dict[str, list[str]]:
        if not isinstance(value, dict):
            return {}
        return {
            str(status): _string_list(tags)
            for status, tags in value.items()
            if isinstance(tags, list)
        }


class ServiceImport(BaseModel):
    """Import record of a file in one file service."""

    model_config = ConfigDict(extra="ignore")

    time_imported: float | None = None


class FileServices(BaseModel):
    model_config = ConfigDict(extra="ignore")

    current: dict[str, ServiceImport] = Field(default_factory=dict)

    @field_validator("current", mode="before")
    @classmethod
    def _clean_current(cls, value: Any) -> dict[str, Any]:
        if not isinstance(value, dict):
            return {}
        return {str(key): entry for key, entry in value.items() if isinstance(entry, dict)}


class HydrusFileMetadata(BaseModel):
    """Metadata of a single file from ``/get_files/file_metadata``."""

    model_config = ConfigDict(extra="ignore")

    file_id: int
    hash: str
    size: int | None = None
    mime: str = "application/octet-stream"
    ext: str = ""
    width: int | None = None
    height: int | None = None
    duration: int | None = None  # milliseconds
    has_audio: bool | None = None
    blurhash: str | None = None
    pixel_hash: str | None = None
    known_urls: list[str] = Field(default_factory=list)
    tags: dict[str, TagServiceTags] = Field(default_factory=dict)
    file_services: FileServices = Field(default_factory=FileServices)
    notes: dict[str, str] = Field(default_factory=dict)

    @field_validator("known_urls", mode="before")
    @classmethod
    def _clean_known_urls(cls, value: Any) -> list[str]:
        return _string_list(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _clean_tags(cls, value: Any) -> dict[str, Any]:
        if not isinstance(value, dict):
            return {}
        return {
            str(service_key): service
            for service_key, service in value.items()
            if isinstance(service, dict)
        }

    @field_validator("file_services", mode="before")
    @classmethod
    def _clean_file_services(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @field_validator("notes", mode="before")
    @classmethod
    def _clean_notes(cls, value: Any) -> dict[str, str]:
        if not isinstance(value, dict):
            return {}
        return {
            name: content
            for name, content in value.items()
            if isinstance(name, str) and isinstance(content, str)
        }

    def current_tags(self) -> list[str]:
        """Return the currently applied display tags across all services.

        Order follows service order, then tag order. Tags are deduplicated
        case-insensitively (first spelling wins) and ``system:`` tags are
        dropped.
        """
        tags: list[str] = []
        seen: set[str] = set()
        for service in self.tags.values():
            for tag in service.display_tags.get(CURRENT_TAG_STATUS, []):
                if not tag:
                    continue
                folded = tag.lower()
                if folded.startswith(SYSTEM_TAG_PREFIX) or folded in seen:
                    continue
                seen.add(folded)
                tags.append(tag)
        return tags

    def first_import_time(self) -> datetime | None:
        """Return the import time of the first file service that records one."""
        for service in self.file_services.current.values():
            if service.time_imported:
                return datetime.fromtimestamp(service.time_imported, tz=UTC)
        return None


class SearchResult(BaseModel):
    """Response of ``/get_files/search_files``."""

    model_config = ConfigDict(extra="ignore")

    file_ids: list[int] = Field(default_factory=list)
    hashes: list[str] | None = None


@dataclass(frozen=True)
class InvalidFileMetadata:
    """A metadata record that failed validation."""

    label: str
    reason: str

    @classmethod
    def from_error(cls, entry: Any, index: int, exc: ValidationError) -> InvalidFileMetadata:
        label = f"entry {index}"
        if isinstance(entry, dict):
            if isinstance(entry.get("hash"), str) and entry["hash"]:
                label = entry["hash"]
            elif isinstance(entry.get("file_id"), int):
                label = f"file {entry['file_id']}"
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "record"
        return cls(label=label, reason=f"{location}: {first['msg']}")

    def describe(self) -> str:
        return f"{self.label}: invalid metadata ({self.reason})"


@dataclass
class MetadataBatch:
    """Parsed metadata of one request: usable files plus rejected records."""

    files: list[HydrusFileMetadata] = field(default_factory=list)
    invalid: list[InvalidFileMetadata] = field(default_factory=list)


class MetadataResponse(BaseModel):
    """Response of ``/get_files/file_metadata``.

    Records are kept raw and validated one by one in ``parse_files``.
    """

    model_config = ConfigDict(extra="ignore")

    metadata: list[Any] = Field(default_factory=list)

    @field_validator("metadata", mode="before")
    @classmethod
    def _clean_metadata(cls, value: Any) -> list[Any]:
        return value if isinstance(value, list) else []

    def parse_files(self) -> MetadataBatch:
        batch = MetadataBatch()
        for index, entry in enumerate(self.metadata):
            try:
                batch.files.append(HydrusFileMetadata.model_validate(entry))
            except ValidationError as exc:
                batch.invalid.append(InvalidFileMetadata.from_error(entry, index, exc))
        return batch


class VerifyAccessKeyResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    permits_everything: bool = False
    human_description: str = ""
