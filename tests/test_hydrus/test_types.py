"""Tests for tolerant parsing of Hydrus file metadata."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from booru.hydrus.types import HydrusFileMetadata, MetadataResponse, SearchResult


def _metadata(**fields: Any) -> HydrusFileMetadata:
    return HydrusFileMetadata.model_validate({"file_id": 1, "hash": "ab" * 32, **fields})


class TestTagShapeGuards:
    @pytest.mark.parametrize(
        "tags",
        [
            None,
            [],
            "creator:someone",
            {"service": None},
            {"service": {}},
            {"service": {"display_tags": None}},
            {"service": {"display_tags": {"0": "not a list"}}},
            {"service": {"display_tags": {"0": [1, None, {"x": 1}]}}},
            {"service": {"storage_tags": {"0": ["only storage"]}}},
        ],
    )
    def test_malformed_tags_degrade_to_no_tags(self, tags: Any) -> None:
        assert _metadata(tags=tags).current_tags() == []

    def test_non_string_entries_are_dropped(self) -> None:
        meta = _metadata(tags={"s": {"display_tags": {"0": ["keep", 7, None, "also"]}}})
        assert meta.current_tags() == ["keep", "also"]

    def test_only_current_status_counts(self) -> None:
        meta = _metadata(
            tags={"s": {"display_tags": {"0": ["current"], "1": ["pending"], "2": ["deleted"]}}}
        )
        assert meta.current_tags() == ["current"]

    def test_missing_tags_key(self) -> None:
        assert _metadata().current_tags() == []


class TestCurrentTags:
    def test_case_insensitive_dedupe_keeps_first_spelling(self) -> None:
        meta = _metadata(
            tags={
                "a": {"display_tags": {"0": ["Blue Sky", "cloud"]}},
                "b": {"display_tags": {"0": ["blue sky", "CLOUD", "sun"]}},
            }
        )
        assert meta.current_tags() == ["Blue Sky", "cloud", "sun"]

    def test_system_tags_dropped(self) -> None:
        meta = _metadata(
            tags={"s": {"display_tags": {"0": ["system:inbox", "SYSTEM:archive", "sky", ""]}}}
        )
        assert meta.current_tags() == ["sky"]


class TestOtherFields:
    def test_notes_tolerate_bad_shapes(self) -> None:
        assert _metadata(notes=None).notes == {}
        assert _metadata(notes=["a"]).notes == {}
        assert _metadata(notes={"ok": "text", "bad": 3}).notes == {"ok": "text"}

    def test_known_urls_tolerate_bad_shapes(self) -> None:
        assert _metadata(known_urls=None).known_urls == []
        assert _metadata(known_urls=["https://a", 5]).known_urls == ["https://a"]

    def test_first_import_time(self) -> None:
        meta = _metadata(
            file_services={
                "current": {
                    "trash": {},
                    "local": {"time_imported": 1_700_000_000},
                }
            }
        )
        assert meta.first_import_time() == datetime.fromtimestamp(1_700_000_000, tz=UTC)

    @pytest.mark.parametrize(
        "file_services",
        [None, {}, {"current": None}, {"current": {"x": "bad"}}, {"current": {"x": {}}}],
    )
    def test_first_import_time_absent(self, file_services: Any) -> None:
        assert _metadata(file_services=file_services).first_import_time() is None

    def test_extra_fields_ignored(self) -> None:
        meta = _metadata(is_inbox=True, thumbnail_width=200)
        assert meta.file_id == 1


class TestSearchResult:
    def test_hashes_optional(self) -> None:
        result = SearchResult.model_validate({"file_ids": [3, 1, 2]})
        assert result.file_ids == [3, 1, 2]
        assert result.hashes is None


class TestMetadataResponse:
    def test_invalid_records_are_labelled(self) -> None:
        response = MetadataResponse.model_validate(
            {
                "metadata": [
                    {"file_id": 1, "hash": "ab" * 32},
                    {"file_id": 2, "hash": "cd" * 32, "width": "wide"},
                    {"file_id": 3},
                    "not a record",
                ]
            }
        )
        batch = response.parse_files()

        assert [f.file_id for f in batch.files] == [1]
        assert [invalid.label for invalid in batch.invalid] == ["cd" * 32, "file 3", "entry 3"]
        assert batch.invalid[0].reason.startswith("width: ")
        assert batch.invalid[1].describe().startswith("file 3: invalid metadata (hash: ")

    def test_non_list_metadata_is_empty(self) -> None:
        batch = MetadataResponse.model_validate({"metadata": None}).parse_files()
        assert batch.files == []
        assert batch.invalid == []
