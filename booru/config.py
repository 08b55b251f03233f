"""Application configuration loaded from environment variables."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Hydrus booru settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/booru.db"
    sqlite_busy_timeout_ms: int = Field(default=30_000, ge=0)

    # Hydrus client API
    hydrus_api_url: str = "http://localhost:45869"
    hydrus_api_key: str = ""
    hydrus_files_path: Path = Path("")
    hydrus_timeout_seconds: float = Field(default=60.0, gt=0)

    # Sync. Posts missing from Hydrus are only deleted after a full listing:
    # ["system:everything"], or any filter when sync_full_listing is true.
    sync_default_tags: list[str] = Field(default_factory=lambda: ["system:everything"])
    sync_full_listing: bool | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # CORS
    cors_origins: list[str] = Field(default_factory=list)
    trusted_hosts: list[str] = Field(default_factory=list)

    @property
    def reconciles_default_sync(self) -> bool:
        if self.sync_full_listing is not None:
            return self.sync_full_listing
        return self.sync_default_tags == ["system:everything"]

    def validate_runtime_security(self) -> None:
        """Validate production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if not self.trusted_hosts:
            violations.append("TRUSTED_HOSTS must be configured in production")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")


def app_version() -> str:
    """Installed package version, or "unknown" when running from a bare checkout."""
    try:
        return version("hydrus-booru")
    except PackageNotFoundError:
        return "unknown"
