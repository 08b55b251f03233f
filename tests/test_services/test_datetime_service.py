"""Tests for datetime helpers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

from booru.services.datetime_service import as_utc, format_iso, now_utc


class TestDatetimeHelpers:
    def test_now_utc_is_aware(self) -> None:
        assert now_utc().tzinfo is UTC

    def test_as_utc_attaches_utc_to_naive(self) -> None:
        assert as_utc(datetime(2026, 1, 1, 12, 0)) == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def test_as_utc_converts_other_zones(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        result = as_utc(datetime(2026, 1, 1, 14, 0, tzinfo=plus_two))
        assert result == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
        assert result is not None
        assert result.tzinfo is UTC

    def test_as_utc_none(self) -> None:
        assert as_utc(None) is None

    def test_format_iso(self) -> None:
        assert format_iso(datetime(2026, 2, 2, 22, 21, 29)) == "2026-02-02T22:21:29+00:00"
