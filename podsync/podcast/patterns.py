"""Pattern language for download paths, filenames and ledger ids.

Patterns are plain strings with ``{token}`` spans, scanned left to right.
Spans do not nest, and an unterminated ``{`` is copied as literal text.

Recognized tokens:

    pubdate::unix          publish time as unix seconds
    pubdate::<fmt>         publish time formatted with strftime
    id3::<tag>             tag value written to the media file
    rss::episode::<key>    raw item field
    rss::channel::<key>    raw channel field
    guid, url              episode identity
    podname                subscription name
    appname                program name
    home                   user home directory

Tokens whose data is unavailable in the current context resolve to
``NOT_FOUND``. Unknown tokens raise ``ConfigError``.
"""

import os
from dataclasses import dataclass
from typing import Iterator, Mapping, Optional, Tuple

from podsync.exceptions import ConfigError

from .episode import Episode
from .feed_parser import RawChannel, RawRecord

APP_NAME = "podsync"
NOT_FOUND = "unknown"

# ID3 frame ids for friendlier tag names
TAG_ALIASES = {
    "title": "TIT2",
    "album": "TALB",
    "artist": "TPE1",
    "genre": "TCON",
    "copyright": "TCOP",
    "language": "TLAN",
    "date": "TDRC",
    "url": "WOAF",
}

_SIMPLE_TOKENS = frozenset({"guid", "url", "podname", "appname", "home"})


@dataclass(frozen=True)
class PatternContext:
    """Data available to a pattern evaluation."""

    podname: str
    channel: Optional[RawChannel] = None
    episode: Optional[Episode] = None
    tags: Optional[Mapping[str, str]] = None


def iter_segments(pattern: str) -> Iterator[Tuple[bool, str]]:
    """Split a pattern into ``(is_token, text)`` segments."""
    pos = 0
    while pos < len(pattern):
        start = pattern.find("{", pos)
        if start == -1:
            yield False, pattern[pos:]
            return
        end = pattern.find("}", start + 1)
        if end == -1:
            yield False, pattern[pos:]
            return
        if start > pos:
            yield False, pattern[pos:start]
        yield True, pattern[start + 1:end]
        pos = end + 1


def _is_known(token: str) -> bool:
    if token in _SIMPLE_TOKENS:
        return True
    if token.startswith("pubdate::"):
        return bool(token[len("pubdate::"):])
    if token.startswith("id3::"):
        return bool(token[len("id3::"):])
    if token.startswith("rss::episode::"):
        return bool(token[len("rss::episode::"):])
    if token.startswith("rss::channel::"):
        return bool(token[len("rss::channel::"):])
    return False


def validate_pattern(pattern: str, subscription: Optional[str] = None) -> None:
    """Reject patterns containing unknown tokens.

    Raises:
        ConfigError: On the first unrecognized token.
    """
    for is_token, text in iter_segments(pattern):
        if is_token and not _is_known(text):
            raise ConfigError(
                f"Unknown pattern token '{{{text}}}' in '{pattern}'",
                subscription=subscription,
            )


def _lookup(record: Optional[RawRecord], key: str) -> str:
    if record is None:
        return NOT_FOUND
    value = record.get_str(key)
    return value if value is not None else NOT_FOUND


def _lookup_tag(tags: Optional[Mapping[str, str]], name: str) -> str:
    if not tags:
        return NOT_FOUND
    value = tags.get(name)
    if value is None:
        alias = TAG_ALIASES.get(name.lower())
        if alias:
            value = tags.get(alias)
    return value if value else NOT_FOUND


def resolve_token(token: str, context: PatternContext) -> str:
    """Resolve a single token against a context.

    Raises:
        ConfigError: If the token is not recognized.
    """
    episode = context.episode

    if token == "podname":
        return context.podname
    if token == "appname":
        return APP_NAME
    if token == "home":
        return os.path.expanduser("~")
    if token == "guid":
        return episode.guid if episode else NOT_FOUND
    if token == "url":
        return episode.url if episode else NOT_FOUND

    if token.startswith("pubdate::") and _is_known(token):
        if episode is None:
            return NOT_FOUND
        fmt = token[len("pubdate::"):]
        if fmt == "unix":
            return str(episode.timestamp)
        return episode.published.strftime(fmt)

    if token.startswith("id3::") and _is_known(token):
        return _lookup_tag(context.tags, token[len("id3::"):])

    if token.startswith("rss::episode::") and _is_known(token):
        raw = episode.raw if episode else None
        return _lookup(raw, token[len("rss::episode::"):])

    if token.startswith("rss::channel::") and _is_known(token):
        return _lookup(context.channel, token[len("rss::channel::"):])

    raise ConfigError(f"Unknown pattern token '{{{token}}}'", subscription=context.podname)


def evaluate(pattern: str, context: PatternContext) -> str:
    """Substitute every token of `pattern`."""
    parts = []
    for is_token, text in iter_segments(pattern):
        parts.append(resolve_token(text, context) if is_token else text)
    return "".join(parts)


def sanitize_filename(name: str) -> str:
    """Make an evaluated name safe to use as a single path component.

    Args:
        name: Evaluated filename pattern.

    Returns:
        Name without path separators or characters invalid on common
        filesystems; "episode" if nothing usable remains.
    """
    safe = "".join(
        "_" if ch in '<>:"/\\|?*' or ord(ch) < 32 else ch
        for ch in name
    )
    safe = " ".join(safe.split())
    safe = safe.strip(" .")
    # Leave room for the extension within common 255-byte limits
    if len(safe.encode("utf-8")) > 200:
        safe = safe.encode("utf-8")[:200].decode("utf-8", errors="ignore").rstrip(" .")
    return safe or "episode"
