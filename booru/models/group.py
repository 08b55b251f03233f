"""Source group models."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from booru.models.base import Base

if TYPE_CHECKING:
    from booru.models.post import Post


class SourceType(StrEnum):
    """Known source sites, plus the synthetic title grouping."""

    PIXIV = "pixiv"
    TWITTER = "twitter"
    DEVIANTART = "deviantart"
    DANBOORU = "danbooru"
    GELBOORU = "gelbooru"
    TITLE = "title"
    OTHER = "other"


class Group(Base):
    """Posts sharing one source identity (external work id or derived title)."""

    __tablename__ = "groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    source_id: Mapped[str] = mapped_column(Text, nullable=False)

    posts: Mapped[list[PostGroup]] = relationship(back_populates="group", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("source_type", "source_id", name="uq_groups_source_type_source_id"),
    )


class PostGroup(Base):
    """Membership of a post in a group, with its page/part position."""

    __tablename__ = "post_groups"

    post_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("posts.id", ondelete="CASCADE"),
        primary_key=True,
    )
    group_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("groups.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    post: Mapped[Post] = relationship(back_populates="groups")
    group: Mapped[Group] = relationship(back_populates="posts")
