"""Deletion reconciliation and tag statistics.

After a full listing, posts whose hash Hydrus no longer reports are deleted
(their tag, group and note rows cascade), tag post counts are recomputed and
tags or groups left without posts are removed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select, update

from booru.models.group import Group, PostGroup
from booru.models.post import Post
from booru.models.tag import PostTag, Tag

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

DELETE_CHUNK_SIZE = 500


@dataclass
class ReconcileResult:
    """Rows removed by one reconciliation pass."""

    posts_deleted: int = 0
    tags_deleted: int = 0
    groups_deleted: int = 0


async def find_missing_posts(session: AsyncSession, seen_hashes: Collection[str]) -> list[int]:
    """Return ids of posts whose hash is not in ``seen_hashes`` (case-insensitive)."""
    seen = {file_hash.lower() for file_hash in seen_hashes}
    result = await session.execute(select(Post.id, Post.hash))
    return [post_id for post_id, file_hash in result.all() if file_hash.lower() not in seen]


async def delete_posts(session: AsyncSession, post_ids: Sequence[int]) -> int:
    """Delete posts by id; tag, group and note rows cascade. Returns the count."""
    posts = Post.__table__
    deleted = 0
    for start in range(0, len(post_ids), DELETE_CHUNK_SIZE):
        chunk = post_ids[start : start + DELETE_CHUNK_SIZE]
        result = await session.execute(delete(posts).where(posts.c.id.in_(chunk)))
        deleted += result.rowcount or 0
    return deleted


async def refresh_tag_post_counts(session: AsyncSession) -> None:
    """Recompute every tag's post_count from the post_tags table."""
    tags = Tag.__table__
    post_tags = PostTag.__table__
    count = (
        select(func.count())
        .select_from(post_tags)
        .where(post_tags.c.tag_id == tags.c.id)
        .scalar_subquery()
    )
    await session.execute(update(tags).values(post_count=count))


async def delete_orphan_tags(session: AsyncSession) -> int:
    """Delete tags whose post count is zero. Run after refresh_tag_post_counts."""
    tags = Tag.__table__
    result = await session.execute(delete(tags).where(tags.c.post_count == 0))
    return result.rowcount or 0


async def delete_orphan_groups(session: AsyncSession) -> int:
    """Delete groups that no post belongs to."""
    groups = Group.__table__
    post_groups = PostGroup.__table__
    has_members = select(post_groups.c.group_id).where(post_groups.c.group_id == groups.c.id)
    result = await session.execute(delete(groups).where(~has_members.exists()))
    return result.rowcount or 0


async def refresh_statistics(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Recompute tag post counts without deleting anything."""
    async with session_factory() as session, session.begin():
        await refresh_tag_post_counts(session)


async def reconcile(
    session_factory: async_sessionmaker[AsyncSession],
    seen_hashes: Collection[str],
) -> ReconcileResult:
    """Remove everything absent from a full listing.

    The scan for missing posts runs in its own read-only session so the
    write transaction opens with a write, which SQLite needs to take the
    write lock up front.
    """
    async with session_factory() as session:
        missing = await find_missing_posts(session, seen_hashes)

    async with session_factory() as session, session.begin():
        posts_deleted = await delete_posts(session, missing)
        await refresh_tag_post_counts(session)
        tags_deleted = await delete_orphan_tags(session)
        groups_deleted = await delete_orphan_groups(session)

    result = ReconcileResult(
        posts_deleted=posts_deleted,
        tags_deleted=tags_deleted,
        groups_deleted=groups_deleted,
    )
    logger.info(
        "Reconciliation removed %d posts, %d tags, %d groups",
        result.posts_deleted,
        result.tags_deleted,
        result.groups_deleted,
    )
    return result
