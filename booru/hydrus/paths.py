"""On-disk locations of Hydrus files and thumbnails.

Hydrus shards its file store by the first two hex characters of the hash:
``f{xx}/{hash}{ext}`` for files and ``t{xx}/{hash}.thumbnail`` for thumbnails.
"""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from os import PathLike


def _shard(file_hash: str) -> str:
    return file_hash[:2].lower()


def build_file_path(base_path: str | PathLike[str], file_hash: str, extension: str) -> str:
    """Return the path of a file inside the Hydrus file store."""
    return str(PurePosixPath(base_path) / f"f{_shard(file_hash)}" / f"{file_hash}{extension}")


def build_thumbnail_path(base_path: str | PathLike[str], file_hash: str) -> str:
    """Return the path of a thumbnail inside the Hydrus file store."""
    return str(PurePosixPath(base_path) / f"t{_shard(file_hash)}" / f"{file_hash}.thumbnail")
