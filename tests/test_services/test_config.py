"""Tests for application configuration."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from booru.config import Settings, app_version


class TestSettings:
    def test_default_settings(self) -> None:
        s = Settings(_env_file=None)
        assert s.debug is False
        assert s.port == 8000
        assert s.hydrus_api_url == "http://localhost:45869"
        assert s.hydrus_api_key == ""
        assert s.sync_default_tags == ["system:everything"]
        assert s.sqlite_busy_timeout_ms == 30_000

    def test_custom_settings(self, tmp_path: Path) -> None:
        s = Settings(
            _env_file=None,
            debug=True,
            hydrus_api_key="key",
            hydrus_files_path=tmp_path / "client_files",
            sync_default_tags=["system:inbox"],
        )
        assert s.debug is True
        assert s.hydrus_files_path == tmp_path / "client_files"
        assert s.sync_default_tags == ["system:inbox"]

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HYDRUS_API_KEY", "from-env")
        monkeypatch.setenv("HYDRUS_TIMEOUT_SECONDS", "5")
        monkeypatch.setenv("SYNC_DEFAULT_TAGS", '["creator:someone"]')
        s = Settings(_env_file=None)
        assert s.hydrus_api_key == "from-env"
        assert s.hydrus_timeout_seconds == 5.0
        assert s.sync_default_tags == ["creator:someone"]

    @pytest.mark.parametrize(
        "overrides",
        [{"port": 0}, {"hydrus_timeout_seconds": 0}, {"sqlite_busy_timeout_ms": -1}],
    )
    def test_out_of_range_values_rejected(self, overrides: dict[str, int]) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **overrides)

    def test_settings_from_fixture(self, test_settings: Settings) -> None:
        assert test_settings.debug is True
        assert test_settings.hydrus_api_key
        assert test_settings.database_url.startswith("sqlite+aiosqlite:///")


    @pytest.mark.parametrize(
        ("tags", "full_listing", "expected"),
        [
            (["system:everything"], None, True),
            (["system:inbox"], None, False),
            (["system:inbox"], True, True),
            (["system:everything"], False, False),
        ],
    )
    def test_default_sync_reconciles(
        self, tags: list[str], full_listing: bool | None, expected: bool
    ) -> None:
        s = Settings(_env_file=None, sync_default_tags=tags, sync_full_listing=full_listing)
        assert s.reconciles_default_sync is expected

    def test_app_version_is_a_string(self) -> None:
        assert isinstance(app_version(), str)
        assert app_version()

class TestRuntimeSecurity:
    def test_production_requires_trusted_hosts(self) -> None:
        with pytest.raises(ValueError, match="TRUSTED_HOSTS"):
            Settings(_env_file=None).validate_runtime_security()

    def test_production_with_trusted_hosts_passes(self) -> None:
        Settings(_env_file=None, trusted_hosts=["booru.example"]).validate_runtime_security()

    def test_debug_skips_checks(self) -> None:
        Settings(_env_file=None, debug=True).validate_runtime_security()


class TestCliEntry:
    def test_cli_entry_uses_app_settings(self) -> None:
        """cli_entry() should use the global app's settings, not create a new Settings()."""
        from booru.main import app, cli_entry

        original_settings = getattr(app.state, "settings", None)
        app.state.settings = Settings(_env_file=None, host="127.0.0.1", port=9999, debug=True)

        try:
            with patch("uvicorn.run") as mock_run:
                cli_entry()

            mock_run.assert_called_once_with(
                "booru.main:app",
                host="127.0.0.1",
                port=9999,
                reload=True,
            )
        finally:
            if original_settings is None:
                del app.state.settings
            else:
                app.state.settings = original_settings
