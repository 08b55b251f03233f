"""Batch lookup preparation: resolve every tag and group of a batch up front.

Per-file merges run concurrently, so creating tags and groups on demand would
race on the unique (name, category) and (source_type, source_id) keys. Instead
all pairs a batch references are inserted in one transaction with
"insert, ignore if present", then read back by natural key. The resulting id
maps are read-only for the merge workers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy import select

from booru.database import dialect_insert
from booru.exceptions import InvalidLookupValueError
from booru.hydrus.tag_mapper import StoredTag, normalize_tag_for_storage, parse_tag
from booru.hydrus.title_grouper import extract_title_groups
from booru.hydrus.url_parser import parse_source_urls
from booru.models.group import Group, SourceType
from booru.models.tag import Tag, TagCategory

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from booru.hydrus.types import HydrusFileMetadata

logger = logging.getLogger(__name__)

# Rows per INSERT/SELECT statement, well below SQLite's bound-parameter limit
LOOKUP_CHUNK_SIZE = 500

_T = TypeVar("_T")

TagKey = tuple[str, str]
GroupKey = tuple[str, str]


@dataclass(frozen=True)
class GroupRef:
    """A group a file belongs to, with its position inside the group."""

    source_type: SourceType
    source_id: str
    position: int = 0

    @property
    def key(self) -> GroupKey:
        return (self.source_type.value, self.source_id)


@dataclass
class BatchLookups:
    """Id maps for one batch, keyed by natural key."""

    tag_ids: dict[TagKey, int] = field(default_factory=dict)
    group_ids: dict[GroupKey, int] = field(default_factory=dict)


def _chunked(items: Sequence[_T], size: int) -> Iterator[Sequence[_T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


# ── Per-file extraction ──────────────────────────────


def file_stored_tags(metadata: HydrusFileMetadata) -> list[StoredTag]:
    """Return the distinct storage pairs of a file's current tags, in tag order."""
    stored: list[StoredTag] = []
    seen: set[StoredTag] = set()
    for raw in metadata.current_tags():
        tag = normalize_tag_for_storage(parse_tag(raw))
        if not tag.name or tag in seen:
            continue
        seen.add(tag)
        stored.append(tag)
    return stored


def file_group_refs(metadata: HydrusFileMetadata) -> list[GroupRef]:
    """Return the groups of a file: source URL groups first, then title groups."""
    refs: list[GroupRef] = []
    seen: set[GroupKey] = set()

    candidates = [
        GroupRef(source.source_type, source.source_id, source.position)
        for source in parse_source_urls(metadata.known_urls)
    ]
    candidates.extend(
        GroupRef(title.source_type, title.source_id, title.position)
        for title in extract_title_groups(metadata)
    )
    for ref in candidates:
        if ref.key in seen:
            continue
        seen.add(ref.key)
        refs.append(ref)
    return refs


def collect_batch_tags(files: Iterable[HydrusFileMetadata]) -> list[TagKey]:
    """Collect the distinct (name, category) pairs referenced by a batch."""
    keys: dict[TagKey, None] = {}
    for metadata in files:
        for tag in file_stored_tags(metadata):
            keys.setdefault((tag.name, tag.category.value), None)
    return list(keys)


def collect_batch_groups(files: Iterable[HydrusFileMetadata]) -> list[GroupKey]:
    """Collect the distinct (source_type, source_id) pairs referenced by a batch."""
    keys: dict[GroupKey, None] = {}
    for metadata in files:
        for ref in file_group_refs(metadata):
            keys.setdefault(ref.key, None)
    return list(keys)


# ── Bulk resolution ──────────────────────────────────


def _validate_tag_categories(tags: Iterable[TagKey]) -> None:
    valid = {category.value for category in TagCategory}
    for name, category in tags:
        if category not in valid:
            msg = f"Invalid tag category {category!r} for tag {name!r}"
            raise InvalidLookupValueError(msg)


def _validate_source_types(groups: Iterable[GroupKey]) -> None:
    valid = {source_type.value for source_type in SourceType}
    for source_type, source_id in groups:
        if source_type not in valid:
            msg = f"Invalid source type {source_type!r} for group {source_id!r}"
            raise InvalidLookupValueError(msg)


async def bulk_ensure_tags(session: AsyncSession, tags: Sequence[TagKey]) -> dict[TagKey, int]:
    """Insert missing tags and return ids for all of them.

    Raises InvalidLookupValueError before touching the database if any
    category is outside TagCategory. Must run inside a transaction so the
    re-read sees the rows just inserted.
    """
    _validate_tag_categories(tags)
    if not tags:
        return {}

    insert = dialect_insert(session)
    for chunk in _chunked(tags, LOOKUP_CHUNK_SIZE):
        stmt = insert(Tag.__table__).values(
            [{"name": name, "category": category, "post_count": 0} for name, category in chunk]
        )
        await session.execute(stmt.on_conflict_do_nothing(index_elements=["name", "category"]))

    wanted = set(tags)
    tag_ids: dict[TagKey, int] = {}
    names = sorted({name for name, _ in tags})
    for chunk in _chunked(names, LOOKUP_CHUNK_SIZE):
        result = await session.execute(
            select(Tag.id, Tag.name, Tag.category).where(Tag.name.in_(chunk))
        )
        for tag_id, name, category in result.all():
            if (name, category) in wanted:
                tag_ids[(name, category)] = tag_id
    return tag_ids


async def bulk_ensure_groups(
    session: AsyncSession, groups: Sequence[GroupKey]
) -> dict[GroupKey, int]:
    """Insert missing groups and return ids for all of them.

    Same contract as bulk_ensure_tags, validating against SourceType.
    """
    _validate_source_types(groups)
    if not groups:
        return {}

    insert = dialect_insert(session)
    for chunk in _chunked(groups, LOOKUP_CHUNK_SIZE):
        stmt = insert(Group.__table__).values(
            [
                {"source_type": source_type, "source_id": source_id}
                for source_type, source_id in chunk
            ]
        )
        await session.execute(
            stmt.on_conflict_do_nothing(index_elements=["source_type", "source_id"])
        )

    wanted = set(groups)
    group_ids: dict[GroupKey, int] = {}
    source_ids = sorted({source_id for _, source_id in groups})
    for chunk in _chunked(source_ids, LOOKUP_CHUNK_SIZE):
        result = await session.execute(
            select(Group.id, Group.source_type, Group.source_id).where(
                Group.source_id.in_(chunk)
            )
        )
        for group_id, source_type, source_id in result.all():
            if (source_type, source_id) in wanted:
                group_ids[(source_type, source_id)] = group_id
    return group_ids


async def prepare_batch_lookups(
    session_factory: async_sessionmaker[AsyncSession],
    files: Sequence[HydrusFileMetadata],
) -> BatchLookups:
    """Resolve all tags and groups of a batch in a single committed transaction."""
    tag_keys = collect_batch_tags(files)
    group_keys = collect_batch_groups(files)

    async with session_factory() as session, session.begin():
        tag_ids = await bulk_ensure_tags(session, tag_keys)
        group_ids = await bulk_ensure_groups(session, group_keys)

    missing_tags = len(tag_keys) - len(tag_ids)
    missing_groups = len(group_keys) - len(group_ids)
    if missing_tags or missing_groups:
        logger.warning(
            "Batch lookup left %d tag(s) and %d group(s) unresolved",
            missing_tags,
            missing_groups,
        )
    logger.debug(
        "Prepared lookups for %d files: %d tags, %d groups",
        len(files),
        len(tag_ids),
        len(group_ids),
    )
    return BatchLookups(tag_ids=tag_ids, group_ids=group_ids)
