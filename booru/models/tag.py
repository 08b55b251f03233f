"""Tag models."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from booru.models.base import Base

if TYPE_CHECKING:
    from booru.models.post import Post


class TagCategory(StrEnum):
    """Fixed booru tag taxonomy."""

    GENERAL = "general"
    ARTIST = "artist"
    CHARACTER = "character"
    COPYRIGHT = "copyright"
    META = "meta"


class Tag(Base):
    """A tag, unique on (name, category)."""

    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    # Maintained by the reconciliation pass, not by the per-post merge
    post_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    posts: Mapped[list[PostTag]] = relationship(back_populates="tag", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("name", "category", name="uq_tags_name_category"),
        Index("idx_tags_category", "category"),
        Index("idx_tags_post_count", "post_count"),
    )


class PostTag(Base):
    """Association between posts and tags."""

    __tablename__ = "post_tags"

    post_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("posts.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tag_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tags.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )

    post: Mapped[Post] = relationship(back_populates="tags")
    tag: Mapped[Tag] = relationship(back_populates="posts")
