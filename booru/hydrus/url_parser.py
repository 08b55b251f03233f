"""Recognise source-site URLs and extract their (source type, source id)."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

from booru.models.group import SourceType


def _base36_deviation_id(value: str) -> str:
    """Decode a fav.me short id (``d`` + base36) into the numeric deviation id."""
    return str(int(value, 36))


@dataclass(frozen=True)
class SourceRule:
    """One URL form of a source site.

    ``pattern`` must define an ``id`` group and may define a ``pos`` group
    holding the page/part index encoded in the URL.
    """

    pattern: re.Pattern[str]
    transform_id: Callable[[str], str] | None = None


def _rule(pattern: str, transform_id: Callable[[str], str] | None = None) -> SourceRule:
    return SourceRule(re.compile(pattern, re.IGNORECASE), transform_id)


# Ordered: the first matching rule wins.
URL_RULES: list[tuple[SourceType, list[SourceRule]]] = [
    (
        SourceType.PIXIV,
        [
            # https://www.pixiv.net/artworks/12345678, https://www.pixiv.net/en/artworks/12345678
            _rule(r"pixiv\.net/(?:[a-z]{2}/)?artworks/(?P<id>\d+)"),
            # https://www.pixiv.net/member_illust.php?mode=medium&illust_id=12345678
            _rule(r"pixiv\.net/member_illust\.php\?(?:[^#]*&)?illust_id=(?P<id>\d+)"),
            # https://i.pximg.net/img-original/img/2020/01/01/00/00/00/12345678_p0.png
            _rule(r"pximg\.net/.*/(?P<id>\d+)_p(?P<pos>\d+)"),
        ],
    ),
    (
        SourceType.TWITTER,
        [
            # https://twitter.com/i/web/status/1234567890123456789
            _rule(r"(?:^|[/.])(?:twitter|x)\.com/i/web/status/(?P<id>\d+)"),
            # https://x.com/username/status/1234567890123456789/photo/2
            _rule(
                r"(?:^|[/.])(?:twitter|x)\.com/\w+/status(?:es)?/(?P<id>\d+)"
                r"(?:/photo/(?P<pos>\d+))?"
            ),
            # pbs.twimg.com/media/... carries no status id and never matches
        ],
    ),
    (
        SourceType.DEVIANTART,
        [
            # https://www.deviantart.com/username/art/Title-Here-123456789
            _rule(r"deviantart\.com/[\w-]+/art/[\w-]*?-?(?P<id>\d+)(?:$|[/?#])"),
            # https://www.deviantart.com/deviation/123456789
            _rule(r"deviantart\.com/deviation/(?P<id>\d+)"),
            # https://fav.me/d21i3v9 (base36 deviation id)
            _rule(r"fav\.me/d(?P<id>[a-z0-9]+)", _base36_deviation_id),
        ],
    ),
    (
        SourceType.DANBOORU,
        [
            # https://danbooru.donmai.us/posts/12345
            _rule(r"danbooru\.donmai\.us/posts/(?P<id>\d+)"),
            # https://danbooru.donmai.us/post/show/12345
            _rule(r"danbooru\.donmai\.us/post/show/(?P<id>\d+)"),
        ],
    ),
    (
        SourceType.GELBOORU,
        [
            # https://gelbooru.com/index.php?page=post&s=view&id=12345
            _rule(r"gelbooru\.com/index\.php\?(?:[^#]*&)?id=(?P<id>\d+)"),
            # https://gelbooru.com/index.php?id=12345&page=post&s=view and other orderings
            _rule(r"gelbooru\.com/[^?#]*\?(?:[^#]*&)?id=(?P<id>\d+)"),
        ],
    ),
]

# Lower index = preferred as the primary source
SOURCE_PRIORITY: list[SourceType] = [
    SourceType.PIXIV,
    SourceType.DEVIANTART,
    SourceType.TWITTER,
    SourceType.DANBOORU,
    SourceType.GELBOORU,
    SourceType.OTHER,
]


@dataclass(frozen=True)
class ParsedSourceUrl:
    """A URL resolved to its source identity."""

    source_type: SourceType
    source_id: str
    original_url: str
    position: int = 0


def parse_source_url(url: str) -> ParsedSourceUrl | None:
    """Resolve a URL to its source type and id, or None if no rule matches."""
    for source_type, rules in URL_RULES:
        for rule in rules:
            match = rule.pattern.search(url)
            if match is None or not match.group("id"):
                continue
            source_id = match.group("id")
            if rule.transform_id is not None:
                source_id = rule.transform_id(source_id)
            raw_position = match.groupdict().get("pos")
            return ParsedSourceUrl(
                source_type=source_type,
                source_id=source_id,
                original_url=url,
                position=int(raw_position) if raw_position else 0,
            )
    return None


def parse_source_urls(urls: list[str]) -> list[ParsedSourceUrl]:
    """Resolve many URLs, keeping the first occurrence of each (type, id)."""
    results: list[ParsedSourceUrl] = []
    seen: set[tuple[SourceType, str]] = set()
    for url in urls:
        parsed = parse_source_url(url)
        if parsed is None:
            continue
        key = (parsed.source_type, parsed.source_id)
        if key in seen:
            continue
        seen.add(key)
        results.append(parsed)
    return results


def has_known_source(urls: list[str]) -> bool:
    return any(parse_source_url(url) is not None for url in urls)


def get_primary_source(urls: list[str]) -> ParsedSourceUrl | None:
    """Return the preferred source: original sites over aggregators."""
    sources = parse_source_urls(urls)
    if not sources:
        return None
    return min(sources, key=lambda source: SOURCE_PRIORITY.index(source.source_type))


def get_canonical_source_url(source_type: SourceType | str, source_id: str) -> str:
    """Build the canonical URL for a source; empty for types without one."""
    match SourceType(source_type):
        case SourceType.PIXIV:
            return f"https://www.pixiv.net/artworks/{source_id}"
        case SourceType.TWITTER:
            return f"https://twitter.com/i/status/{source_id}"
        case SourceType.DEVIANTART:
            return f"https://www.deviantart.com/deviation/{source_id}"
        case SourceType.DANBOORU:
            return f"https://danbooru.donmai.us/posts/{source_id}"
        case SourceType.GELBOORU:
            return f"https://gelbooru.com/index.php?page=post&s=view&id={source_id}"
        case _:
            return ""
