"""Episode attributes derived from normalized feed items."""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Iterable, List, Optional

from dateutil import parser as date_parser

from .feed_parser import RawChannel, RawEpisode, VENDOR_PREFIX

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Episode:
    """Stable view over one feed item.

    ``index`` is the episode's position after sorting the whole feed by
    publish time (oldest is 0); it is assigned by ``build_episodes``.
    """

    title: str
    guid: str
    url: str
    published: datetime
    raw: RawEpisode
    index: int = -1
    image_url: Optional[str] = None

    @property
    def timestamp(self) -> int:
        """Publish time as unix seconds."""
        return int(self.published.timestamp())

    @classmethod
    def from_raw(cls, raw: RawEpisode, channel: Optional[RawChannel] = None) -> Optional["Episode"]:
        """Derive an Episode from a raw item.

        Args:
            raw: Normalized item map.
            channel: Channel map, used for the artwork fallback.

        Returns:
            Episode, or None when the item has no media URL or publish date.
        """
        title = (
            raw.get_str("title")
            or raw.get_str(f"{VENDOR_PREFIX}:title")
            or "Untitled Episode"
        )

        url = _extract_enclosure_url(raw.get("enclosure"))
        if not url:
            logger.debug(f"Skipping item without enclosure: {title}")
            return None

        published = parse_pub_date(raw.get_str("pubDate"))
        if published is None:
            logger.debug(f"Skipping item without usable pubDate: {title}")
            return None

        guid = raw.get_str("guid") or url

        image_url = raw.image
        if not image_url and channel is not None:
            image_url = channel.image

        return cls(
            title=title,
            guid=guid,
            url=url,
            published=published,
            raw=raw,
            image_url=image_url,
        )


def _extract_enclosure_url(value: Any) -> Optional[str]:
    """Return the first enclosure URL."""
    enclosures = value if isinstance(value, list) else [value]
    for enclosure in enclosures:
        if isinstance(enclosure, dict):
            url = enclosure.get("@url")
            if isinstance(url, str) and url.strip():
                return url.strip()
    return None


def parse_pub_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an RSS publish date into an aware UTC datetime.

    RFC 2822 dates are tried first, then anything python-dateutil accepts.
    Naive results are interpreted as UTC.
    """
    if not value:
        return None

    parsed = None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        pass

    if parsed is None:
        try:
            parsed = date_parser.parse(value)
        except (ValueError, OverflowError):
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def build_episodes(
    channel: Optional[RawChannel], raw_episodes: Iterable[RawEpisode]
) -> List[Episode]:
    """Derive episodes, sort them by publish time and assign dense indices."""
    episodes = []
    for raw in raw_episodes:
        episode = Episode.from_raw(raw, channel)
        if episode is not None:
            episodes.append(episode)

    episodes.sort(key=lambda ep: ep.published)
    return [replace(episode, index=index) for index, episode in enumerate(episodes)]
