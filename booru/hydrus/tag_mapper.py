"""Map Hydrus namespaced tags onto booru tag categories."""

from __future__ import annotations

from dataclasses import dataclass

from booru.models.tag import TagCategory

NAMESPACE_SEPARATOR = ":"

NAMESPACE_TO_CATEGORY: dict[str, TagCategory] = {
    # Artist
    "creator": TagCategory.ARTIST,
    "artist": TagCategory.ARTIST,
    "drawn_by": TagCategory.ARTIST,
    # Character
    "character": TagCategory.CHARACTER,
    "char": TagCategory.CHARACTER,
    "person": TagCategory.CHARACTER,
    # Copyright / series
    "series": TagCategory.COPYRIGHT,
    "copyright": TagCategory.COPYRIGHT,
    "franchise": TagCategory.COPYRIGHT,
    "parody": TagCategory.COPYRIGHT,
    # Meta
    "meta": TagCategory.META,
    "medium": TagCategory.META,
    "rating": TagCategory.META,
    "source": TagCategory.META,
}


@dataclass(frozen=True)
class ParsedTag:
    """A Hydrus tag split into namespace and display name."""

    namespace: str | None
    name: str
    category: TagCategory
    original: str


@dataclass(frozen=True)
class StoredTag:
    """The (name, category) pair a tag is stored under."""

    name: str
    category: TagCategory


def parse_tag(tag: str) -> ParsedTag:
    """Parse a Hydrus tag into namespace and name, and determine its category.

    Only the first separator splits: ``series:foo:bar`` has namespace
    ``series`` and name ``foo:bar``.
    """
    namespace, sep, rest = tag.partition(NAMESPACE_SEPARATOR)
    if not sep:
        return ParsedTag(
            namespace=None,
            name=tag.strip(),
            category=TagCategory.GENERAL,
            original=tag,
        )

    namespace = namespace.strip().lower()
    return ParsedTag(
        namespace=namespace,
        name=rest.strip(),
        category=NAMESPACE_TO_CATEGORY.get(namespace, TagCategory.GENERAL),
        original=tag,
    )


def normalize_tag_for_storage(tag: ParsedTag) -> StoredTag:
    """Reduce a parsed tag to the pair it is stored under.

    Artist/character/copyright/meta tags drop their namespace since the
    category already carries it. General tags keep the full original string so
    sub-namespaced tags such as ``clothing:dress`` stay distinct.
    """
    if tag.category is not TagCategory.GENERAL and tag.namespace:
        return StoredTag(name=tag.name, category=tag.category)
    return StoredTag(name=tag.original, category=tag.category)
