"""SQLAlchemy ORM models for the booru."""

from booru.models.base import Base
from booru.models.group import Group, PostGroup, SourceType
from booru.models.post import Note, Post
from booru.models.sync import SyncState, SyncStatus
from booru.models.tag import PostTag, Tag, TagCategory

__all__ = [
    "Base",
    "Group",
    "Note",
    "Post",
    "PostGroup",
    "PostTag",
    "SourceType",
    "SyncState",
    "SyncStatus",
    "Tag",
    "TagCategory",
]
