"""RSS feed normalization into raw channel and episode maps.

Feeds are converted generically from XML into nested dicts. That conversion
drops XML namespaces, so a vendor tag such as ``itunes:author`` would collide
with the plain ``author`` tag. ``NamespaceEscaper`` protects the vendor prefix
across the conversion as an explicit escape/restore pair.
"""

import asyncio
import logging
import xml.etree.ElementTree as ET  # nosec B405
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional

import aiohttp
from defusedxml.ElementTree import ParseError as DefusedXMLParseError
from defusedxml.ElementTree import fromstring as safe_fromstring

from podsync.exceptions import FetchError, ParseError

logger = logging.getLogger(__name__)

VENDOR_PREFIX = "itunes"

ATTRIBUTE_MARKER = "@"
TEXT_KEY = "#text"


class NamespaceEscaper:
    """Bijective escape/restore of one vendor namespace prefix.

    ``escape`` runs on the raw feed text before XML conversion and rewrites
    ``<prefix>:`` into a colon-free placeholder. ``restore`` runs on the
    converted maps and turns placeholder-prefixed keys (and any string values
    the escape touched) back into ``<prefix>:``. Input that already contains
    the placeholder is rejected, which keeps the pair lossless.

    Example:
        escaper = NamespaceEscaper("itunes")
        text = escaper.escape(xml)
        channel = escaper.restore(convert(text))
    """

    def __init__(self, prefix: str = VENDOR_PREFIX):
        self.prefix = prefix
        self.qualified = f"{prefix}:"
        self.placeholder = f"{prefix}__ns__"

    def escape(self, text: str) -> str:
        """Rewrite every vendor prefix into the placeholder token.

        Raises:
            ParseError: If the text already contains the reserved placeholder.
        """
        if self.placeholder in text:
            raise ParseError(
                f"Feed contains reserved token '{self.placeholder}'"
            )
        return text.replace(self.qualified, self.placeholder)

    def restore_key(self, key: str) -> str:
        """Restore a single escaped key."""
        return key.replace(self.placeholder, self.qualified)

    def restore(self, value: Any) -> Any:
        """Recursively restore keys and strings inside a converted value."""
        if isinstance(value, dict):
            return {
                self.restore_key(key): self.restore(inner)
                for key, inner in value.items()
            }
        if isinstance(value, list):
            return [self.restore(inner) for inner in value]
        if isinstance(value, str):
            return self.restore_key(value)
        return value


def _local_name(tag: str) -> str:
    """Strip a ``{uri}`` namespace qualifier from an element or attribute name."""
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag


def element_to_value(element: ET.Element) -> Any:
    """Convert an XML element into plain Python values.

    Leaf elements without attributes become strings. Anything else becomes a
    dict: attributes under ``@name``, children under their local name (lists
    when repeated) and non-blank text under ``#text``.
    """
    text = (element.text or "").strip()

    if not element.attrib and len(element) == 0:
        return text

    value: Dict[str, Any] = {}
    for name, attr in element.attrib.items():
        value[ATTRIBUTE_MARKER + _local_name(name)] = attr

    for child in element:
        if not isinstance(child.tag, str):
            # Comments and processing instructions
            continue
        key = _local_name(child.tag)
        converted = element_to_value(child)
        if key in value:
            existing = value[key]
            if isinstance(existing, list):
                existing.append(converted)
            else:
                value[key] = [existing, converted]
        else:
            value[key] = converted

    if text:
        value[TEXT_KEY] = text

    return value


def val_to_str(value: Any) -> Optional[str]:
    """Render a converted value as a string where that makes sense."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        text = value.get(TEXT_KEY)
        return text if isinstance(text, str) else None
    if isinstance(value, list):
        for inner in value:
            rendered = val_to_str(inner)
            if rendered is not None:
                return rendered
    return None


def val_to_url(value: Any) -> Optional[str]:
    """Resolve a URL from an image-like structure.

    Handles ``<image><url>..</url></image>``, ``<itunes:image href=".."/>`` and
    plain text values.
    """
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        for key in ("url", "@href", "@url"):
            inner = value.get(key)
            if isinstance(inner, str) and inner:
                return inner
        return None
    if isinstance(value, list):
        for inner in value:
            url = val_to_url(inner)
            if url:
                return url
    return None


class RawRecord(Mapping[str, Any]):
    """Read-only view over one normalized map."""

    def __init__(self, data: Mapping[str, Any]):
        self._data = dict(data)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._data!r})"

    def get_str(self, key: str) -> Optional[str]:
        """Return the string form of a field, or None if absent."""
        if key not in self._data:
            return None
        return val_to_str(self._data[key])


class RawChannel(RawRecord):
    """Channel-level fields of a normalized feed."""

    @property
    def title(self) -> Optional[str]:
        return self.get_str("title")

    @property
    def author(self) -> Optional[str]:
        return self.get_str(f"{VENDOR_PREFIX}:author")

    @property
    def categories(self) -> List[str]:
        raw = self.get(f"{VENDOR_PREFIX}:category")
        if raw is None:
            return []
        items = raw if isinstance(raw, list) else [raw]
        categories = []
        for item in items:
            if isinstance(item, dict):
                name = item.get("@text") or val_to_str(item)
            else:
                name = val_to_str(item)
            if name:
                categories.append(name)
        return categories

    @property
    def copyright(self) -> Optional[str]:
        return self.get_str("copyright")

    @property
    def language(self) -> Optional[str]:
        return self.get_str("language")

    @property
    def image(self) -> Optional[str]:
        url = val_to_url(self.get("image"))
        if url:
            return url
        return val_to_url(self.get(f"{VENDOR_PREFIX}:image"))


class RawEpisode(RawRecord):
    """Item-level fields of a normalized feed."""

    @property
    def image(self) -> Optional[str]:
        return val_to_url(self.get(f"{VENDOR_PREFIX}:image"))


@dataclass(frozen=True)
class ParsedFeed:
    """Normalized feed: one channel and its items in feed order."""

    channel: RawChannel
    episodes: List[RawEpisode]


class FeedParser:
    """Parser turning podcast RSS text into raw channel and episode maps.

    Example:
        parser = FeedParser()
        feed = parser.parse_string(xml_text)
        print(feed.channel.title, len(feed.episodes))
    """

    def __init__(self, escaper: Optional[NamespaceEscaper] = None):
        self.escaper = escaper or NamespaceEscaper()

    async def parse_url(self, session: aiohttp.ClientSession, feed_url: str) -> ParsedFeed:
        """Fetch and normalize a feed.

        Raises:
            FetchError: If the feed cannot be downloaded.
            ParseError: If the feed cannot be normalized.
        """
        text = await fetch_feed(session, feed_url)
        return self.parse_string(text)

    def parse_string(self, content: str) -> ParsedFeed:
        """Normalize feed text into a ParsedFeed.

        Args:
            content: RSS feed text.

        Returns:
            ParsedFeed with the channel map and one map per item.

        Raises:
            ParseError: If the XML is malformed or rss/channel/item is missing.
        """
        escaped = self.escaper.escape(content)

        try:
            root = safe_fromstring(escaped)
        except (DefusedXMLParseError, ET.ParseError, ValueError) as e:
            raise ParseError(f"Malformed feed XML: {e}") from e

        if root is None or _local_name(root.tag) != "rss":
            raise ParseError("Feed root element is not <rss>")

        channel_element = next(
            (child for child in root if isinstance(child.tag, str) and _local_name(child.tag) == "channel"),
            None,
        )
        if channel_element is None:
            raise ParseError("Feed has no <channel> element")

        channel_value = element_to_value(channel_element)
        if not isinstance(channel_value, dict):
            raise ParseError("Feed <channel> element is empty")

        items = channel_value.pop("item", None)
        if items is None:
            raise ParseError("Feed channel has no <item> elements")
        if not isinstance(items, list):
            items = [items]

        episodes = []
        for item in items:
            if not isinstance(item, dict):
                raise ParseError("Feed contains an empty <item> element")
            episodes.append(RawEpisode(self.escaper.restore(item)))

        channel = RawChannel(self.escaper.restore(channel_value))
        logger.debug(f"Normalized feed '{channel.title}' with {len(episodes)} items")
        return ParsedFeed(channel=channel, episodes=episodes)


async def fetch_feed(session: aiohttp.ClientSession, feed_url: str) -> str:
    """Download feed text.

    The session carries the configured user agent.

    Raises:
        FetchError: On transport errors, non-2xx status or a non-text body.
    """
    logger.info(f"Fetching feed: {feed_url}")
    try:
        async with session.get(feed_url, allow_redirects=True) as response:
            if not 200 <= response.status < 300:
                raise FetchError(
                    f"Feed request failed with HTTP {response.status}", url=feed_url
                )
            try:
                return await response.text()
            except UnicodeDecodeError as e:
                raise FetchError(f"Feed body is not text: {e}", url=feed_url) from e
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise FetchError(f"Failed to fetch feed: {e}", url=feed_url) from e
