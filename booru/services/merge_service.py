"""Per-file merge: upsert one post and replace its tags, groups and notes."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy import delete, insert
from sqlalchemy.exc import DBAPIError, IntegrityError

from booru.database import dialect_insert
from booru.hydrus.paths import build_file_path, build_thumbnail_path
from booru.models.group import PostGroup
from booru.models.post import Note, Post
from booru.models.tag import PostTag
from booru.services.datetime_service import now_utc
from booru.services.lookup_service import file_group_refs, file_stored_tags

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from os import PathLike

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from booru.hydrus.types import HydrusFileMetadata
    from booru.services.lookup_service import BatchLookups

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

MAX_RETRIES = 3
BASE_RETRY_DELAY = 0.05  # seconds, doubled on every retry

# PostgreSQL serialization_failure / deadlock_detected
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01"})
TRANSIENT_MESSAGES = (
    "deadlock",
    "could not serialize",
    "concurrent update",
    "database is locked",
)


def is_transient_db_error(exc: BaseException) -> bool:
    """Return True for database errors caused by contention, worth retrying.

    Constraint violations are never transient, whatever their message says.
    """
    if isinstance(exc, IntegrityError) or not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in TRANSIENT_SQLSTATES:
        return True
    message = str(orig if orig is not None else exc).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGES)


async def run_with_retry(
    operation: Callable[[], Awaitable[_T]],
    *,
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_RETRY_DELAY,
    description: str = "database operation",
) -> _T:
    """Run ``operation``, retrying transient database errors with backoff.

    Up to ``max_retries`` retries after the first attempt, sleeping
    ``base_delay * 2**n`` before retry ``n``. Any other error, or a transient
    one on the last attempt, propagates.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except DBAPIError as exc:
            if attempt >= max_retries or not is_transient_db_error(exc):
                raise
            delay = base_delay * (2**attempt)
            attempt += 1
            logger.warning(
                "Transient error in %s (retry %d/%d in %.0f ms): %s",
                description,
                attempt,
                max_retries,
                delay * 1000,
                exc.orig,
            )
            await asyncio.sleep(delay)


# ── Relation resolution ──────────────────────────────


@dataclass
class FileRelations:
    """A file's tags, groups and notes resolved against batch lookups."""

    tag_ids: list[int] = field(default_factory=list)
    groups: list[tuple[int, int]] = field(default_factory=list)  # (group_id, position)
    notes: list[tuple[str, str, str]] = field(default_factory=list)  # (name, content, hash)


def hash_note(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def resolve_file_relations(metadata: HydrusFileMetadata, lookups: BatchLookups) -> FileRelations:
    """Map a file's tags and groups to ids; unresolved references are skipped."""
    relations = FileRelations()

    seen_tags: set[int] = set()
    for tag in file_stored_tags(metadata):
        tag_id = lookups.tag_ids.get((tag.name, tag.category.value))
        if tag_id is None:
            logger.warning(
                "Tag %r (%s) missing from batch lookups, skipping for %s",
                tag.name,
                tag.category,
                metadata.hash,
            )
            continue
        if tag_id not in seen_tags:
            seen_tags.add(tag_id)
            relations.tag_ids.append(tag_id)

    seen_groups: set[int] = set()
    for ref in file_group_refs(metadata):
        group_id = lookups.group_ids.get(ref.key)
        if group_id is None:
            logger.warning(
                "Group %s:%s missing from batch lookups, skipping for %s",
                ref.source_type,
                ref.source_id,
                metadata.hash,
            )
            continue
        if group_id not in seen_groups:
            seen_groups.add(group_id)
            relations.groups.append((group_id, ref.position))

    relations.notes = [
        (name, content, hash_note(content)) for name, content in metadata.notes.items()
    ]
    return relations


# ── Merge ────────────────────────────────────────────


def _post_values(
    metadata: HydrusFileMetadata, files_path: str | PathLike[str]
) -> dict[str, object]:
    now = now_utc()
    return {
        "hydrus_file_id": metadata.file_id,
        "hash": metadata.hash,
        "file_path": build_file_path(files_path, metadata.hash, metadata.ext),
        "thumbnail_path": build_thumbnail_path(files_path, metadata.hash),
        "mime_type": metadata.mime,
        "extension": metadata.ext,
        "file_size": metadata.size or 0,
        "width": metadata.width,
        "height": metadata.height,
        "duration": metadata.duration,
        "has_audio": bool(metadata.has_audio),
        "blurhash": metadata.blurhash,
        "pixel_hash": metadata.pixel_hash,
        "source_urls": json.dumps(metadata.known_urls),
        "imported_at": metadata.first_import_time() or now,
        "synced_at": now,
    }


async def apply_file_metadata(
    session: AsyncSession,
    metadata: HydrusFileMetadata,
    lookups: BatchLookups,
    files_path: str | PathLike[str],
) -> int:
    """Upsert the post for ``metadata`` and replace its relations.

    Runs inside the caller's transaction. Returns the post id.
    """
    relations = resolve_file_relations(metadata, lookups)
    values = _post_values(metadata, files_path)

    updates = {key: value for key, value in values.items() if key != "hash"}
    if metadata.first_import_time() is None:
        # Keep the original import time rather than moving it to "now"
        del updates["imported_at"]

    upsert = dialect_insert(session)(Post.__table__).values(**values)
    upsert = upsert.on_conflict_do_update(index_elements=["hash"], set_=updates)
    result = await session.execute(upsert.returning(Post.__table__.c.id))
    post_id: int = result.scalar_one()

    await session.execute(delete(PostTag.__table__).where(PostTag.__table__.c.post_id == post_id))
    if relations.tag_ids:
        await session.execute(
            insert(PostTag.__table__),
            [{"post_id": post_id, "tag_id": tag_id} for tag_id in relations.tag_ids],
        )

    await session.execute(
        delete(PostGroup.__table__).where(PostGroup.__table__.c.post_id == post_id)
    )
    if relations.groups:
        await session.execute(
            insert(PostGroup.__table__),
            [
                {"post_id": post_id, "group_id": group_id, "position": position}
                for group_id, position in relations.groups
            ],
        )

    await session.execute(delete(Note.__table__).where(Note.__table__.c.post_id == post_id))
    if relations.notes:
        await session.execute(
            insert(Note.__table__),
            [
                {"post_id": post_id, "name": name, "content": content, "content_hash": digest}
                for name, content, digest in relations.notes
            ],
        )

    return post_id


async def merge_file(
    session_factory: async_sessionmaker[AsyncSession],
    metadata: HydrusFileMetadata,
    lookups: BatchLookups,
    files_path: str | PathLike[str],
) -> int:
    """Merge one file in its own transaction, retrying on contention."""

    async def _attempt() -> int:
        async with session_factory() as session, session.begin():
            return await apply_file_metadata(session, metadata, lookups, files_path)

    return await run_with_retry(_attempt, description=f"merge of {metadata.hash}")
