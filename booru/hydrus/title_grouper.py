"""Group posts by free-text ``title:`` tags.

Posts from the same work often carry titles like ``My Series Part 2`` or
``My Series (3)`` without any structured source id. The trailing page marker
is split off, the remaining base title is hashed and the hash becomes the
source id of a synthetic ``title`` group.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from booru.models.group import SourceType

if TYPE_CHECKING:
    from booru.hydrus.types import HydrusFileMetadata

logger = logging.getLogger(__name__)

TITLE_NAMESPACE = "title:"
PAGE_NAMESPACE = "page:"
MIN_BASE_TITLE_LENGTH = 3

_SEQUENCE_WORDS = r"(?:part|page|pg|p|no|#|chapter|chap|ch|volume|vol|v|episode|ep|e)"

# Ordered pattern families. Each matches a page marker at the end of a title
# and captures its number in ``num``; the first family that matches wins and
# exactly that match is stripped.
PAGE_MARKER_PATTERNS: list[re.Pattern[str]] = [
    # "Title 7/10"
    re.compile(r"\s*(?P<num>\d+)\s*/\s*\d+\s*$"),
    # "Title (1)", "Title ( 01 )"
    re.compile(r"\s*\(\s*(?P<num>\d+)\s*\)\s*$"),
    # "Title [1]"
    re.compile(r"\s*\[\s*(?P<num>\d+)\s*\]\s*$"),
    # "Title - Part 1", "Title _ch.2"
    re.compile(rf"\s*[-_]\s*{_SEQUENCE_WORDS}\s*\.?\s*(?P<num>\d+)\s*$", re.IGNORECASE),
    # "Title - 1", "Title_02"
    re.compile(r"\s*[-_]\s*(?P<num>\d+)\s*$"),
    # "Title Part 1", "Title vol. 3", "Title #4"
    re.compile(rf"\s+{_SEQUENCE_WORDS}\s*\.?\s*(?P<num>\d+)\s*$", re.IGNORECASE),
    # "タイトル その2"
    re.compile(r"\s*その\s*(?P<num>\d+)\s*$"),
    # "タイトル 第3話", "第3章", "第3部"
    re.compile(r"\s*第\s*(?P<num>\d+)\s*[話章部]?\s*$"),
    # "Title 01" (1-3 digits, so trailing years are left alone)
    re.compile(r"\s+0*(?P<num>\d{1,3})\s*$"),
]

_WHITESPACE = re.compile(r"\s+")

_FNV64_OFFSET = 0xCBF29CE484222325
_FNV64_PRIME = 0x100000001B3
_MASK64 = 0xFFFFFFFFFFFFFFFF


@dataclass(frozen=True)
class TitleGroup:
    """A title-derived group membership."""

    source_id: str
    normalized_title: str
    position: int
    source_type: SourceType = SourceType.TITLE


def normalize_title(title: str) -> tuple[str, int]:
    """Split a title into its base title and trailing page position.

    Returns ``(base_title, position)``; position is 0 when no marker is found.
    """
    normalized = title.strip()
    position = 0
    for pattern in PAGE_MARKER_PATTERNS:
        match = pattern.search(normalized)
        if match is None:
            continue
        position = int(match.group("num"))
        normalized = normalized[: match.start()]
        break
    return _WHITESPACE.sub(" ", normalized).strip(), position


def hash_title(title: str) -> str:
    """Stable 64-bit FNV-1a hash of a title, as 16 hex characters."""
    value = _FNV64_OFFSET
    for byte in title.encode("utf-8"):
        value ^= byte
        value = (value * _FNV64_PRIME) & _MASK64
    return f"{value:016x}"


def parse_title_group(title: str) -> TitleGroup | None:
    """Build the title group for one title, or None if it is not groupable."""
    base_title, position = normalize_title(title)
    if len(base_title) < MIN_BASE_TITLE_LENGTH or base_title.isdigit():
        return None
    return TitleGroup(
        source_id=hash_title(base_title.lower()),
        normalized_title=base_title,
        position=position,
    )


def _namespaced_values(metadata: HydrusFileMetadata, namespace: str) -> list[str]:
    values: list[str] = []
    for tag in metadata.current_tags():
        if tag.lower().startswith(namespace):
            value = tag[len(namespace) :].strip()
            if value:
                values.append(value)
    return values


def extract_title_tags(metadata: HydrusFileMetadata) -> list[str]:
    """Return the values of all ``title:`` tags."""
    return _namespaced_values(metadata, TITLE_NAMESPACE)


def extract_page_number(metadata: HydrusFileMetadata) -> int:
    """Return the first positive ``page:`` tag value, or 0 if there is none.

    Zero, negative and non-numeric page tags are ignored.
    """
    for value in _namespaced_values(metadata, PAGE_NAMESPACE):
        if value.isdecimal() and int(value) > 0:
            return int(value)
        logger.debug("Ignoring page tag %r on %s: not a positive integer", value, metadata.hash)
    return 0


def extract_title_groups(metadata: HydrusFileMetadata) -> list[TitleGroup]:
    """Return the title groups of a file, one per distinct base title.

    A ``page:`` tag overrides the position parsed from the title.
    """
    page_position = extract_page_number(metadata)
    groups: list[TitleGroup] = []
    seen: set[str] = set()
    for title in extract_title_tags(metadata):
        group = parse_title_group(title)
        if group is None or group.source_id in seen:
            continue
        seen.add(group.source_id)
        if page_position > 0:
            group = TitleGroup(
                source_id=group.source_id,
                normalized_title=group.normalized_title,
                position=page_position,
            )
        groups.append(group)
    return groups
