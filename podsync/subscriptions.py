"""Subscription list loading.

The subscription file is YAML::

    defaults:
      download_path: "{home}/Podcasts/{podname}"
      max_episodes: 10

    podcasts:
      some-show: https://example.com/feed.xml
      other-show:
        url: https://example.com/other.xml
        backlog_start: 2024-01-01
        backlog_interval: 7
        download_hook: /usr/local/bin/on-episode

Per-podcast settings override ``defaults:``, which override the global
``Config`` patterns. Every pattern is validated here, so an unknown token is
reported before any sync work starts.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from dateutil import parser as date_parser

from podsync.config import Config
from podsync.exceptions import ConfigError
from podsync.podcast.patterns import validate_pattern
from podsync.podcast.selection import Backlog, DownloadMode, Standard

logger = logging.getLogger(__name__)

KNOWN_KEYS = frozenset({
    "url",
    "download_path",
    "name_pattern",
    "id_pattern",
    "max_days",
    "max_episodes",
    "earliest_date",
    "backlog_start",
    "backlog_interval",
    "write_tags",
    "tag_overrides",
    "download_hook",
})


@dataclass(frozen=True)
class SubscriptionConfig:
    """Settings for one podcast subscription."""

    name: str
    url: str
    download_pattern: str
    name_pattern: str
    id_pattern: str
    mode: DownloadMode = field(default_factory=Standard)
    write_tags: bool = True
    tag_overrides: Mapping[str, str] = field(default_factory=dict)
    download_hook: Optional[str] = None

    @property
    def patterns(self) -> List[str]:
        return [self.download_pattern, self.name_pattern, self.id_pattern]

    def validate(self) -> None:
        """Check every pattern for unknown tokens.

        Raises:
            ConfigError: If a pattern contains an unknown token.
        """
        for pattern in self.patterns:
            validate_pattern(pattern, subscription=self.name)


def _parse_datetime(value: Any, key: str, name: str) -> datetime:
    """Accept YAML dates, datetimes, unix timestamps and date strings."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            parsed = date_parser.parse(value)
        except (ValueError, OverflowError) as e:
            raise ConfigError(f"Invalid {key} '{value}': {e}", subscription=name) from e
    else:
        raise ConfigError(f"Invalid {key}: {value!r}", subscription=name)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_optional_int(value: Any, key: str, name: str, min_val: int) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer, got {value!r}", subscription=name)
    if value < min_val:
        raise ConfigError(f"{key} must be >= {min_val}, got {value}", subscription=name)
    return value


def _build_mode(settings: Mapping[str, Any], name: str) -> DownloadMode:
    if settings.get("backlog_start") is not None:
        start = _parse_datetime(settings["backlog_start"], "backlog_start", name)
        interval = _parse_optional_int(settings.get("backlog_interval"), "backlog_interval", name, 1)
        if interval is None:
            raise ConfigError("backlog_start requires backlog_interval", subscription=name)
        return Backlog(start=start, interval_days=interval)

    earliest = settings.get("earliest_date")
    return Standard(
        max_days=_parse_optional_int(settings.get("max_days"), "max_days", name, 0),
        max_episodes=_parse_optional_int(settings.get("max_episodes"), "max_episodes", name, 0),
        earliest_date=_parse_datetime(earliest, "earliest_date", name) if earliest is not None else None,
    )


def build_subscription(
    name: str,
    settings: Union[str, Mapping[str, Any]],
    defaults: Mapping[str, Any],
    config: Config,
) -> SubscriptionConfig:
    """Merge one podcast's settings with the defaults and validate them.

    Raises:
        ConfigError: On missing URL, invalid values or unknown pattern tokens.
    """
    if isinstance(settings, str):
        settings = {"url": settings}
    if not isinstance(settings, Mapping):
        raise ConfigError("settings must be a URL or a mapping", subscription=name)

    merged: Dict[str, Any] = dict(defaults)
    merged.update(settings)

    unknown = set(merged) - KNOWN_KEYS
    if unknown:
        raise ConfigError(f"Unknown settings: {', '.join(sorted(unknown))}", subscription=name)

    url = merged.get("url")
    if not url or not isinstance(url, str):
        raise ConfigError("missing feed url", subscription=name)

    tag_overrides = merged.get("tag_overrides") or {}
    if not isinstance(tag_overrides, Mapping):
        raise ConfigError("tag_overrides must be a mapping", subscription=name)

    hook = merged.get("download_hook")
    subscription = SubscriptionConfig(
        name=str(name),
        url=url,
        download_pattern=str(merged.get("download_path") or config.DOWNLOAD_PATTERN),
        name_pattern=str(merged.get("name_pattern") or config.NAME_PATTERN),
        id_pattern=str(merged.get("id_pattern") or config.ID_PATTERN),
        mode=_build_mode(merged, str(name)),
        write_tags=bool(merged.get("write_tags", True)),
        tag_overrides={str(k): str(v) for k, v in tag_overrides.items()},
        download_hook=str(Path(hook).expanduser()) if hook else None,
    )
    subscription.validate()
    return subscription


def parse_subscriptions(data: Any, config: Config) -> List[SubscriptionConfig]:
    """Build subscriptions from already-parsed YAML data.

    Raises:
        ConfigError: If the structure or any subscription is invalid.
    """
    if data is None:
        return []
    if not isinstance(data, Mapping):
        raise ConfigError("subscription file must contain a mapping")

    defaults = data.get("defaults") or {}
    if not isinstance(defaults, Mapping):
        raise ConfigError("'defaults' must be a mapping")

    podcasts = data.get("podcasts") or {}
    if not isinstance(podcasts, Mapping):
        raise ConfigError("'podcasts' must be a mapping of name to settings")

    return [
        build_subscription(name, settings, defaults, config)
        for name, settings in podcasts.items()
    ]


def load_subscriptions(
    config: Config, path: Union[str, Path, None] = None
) -> List[SubscriptionConfig]:
    """Load and validate the subscription file.

    Args:
        config: Global configuration (default patterns, default file location).
        path: Explicit subscription file; defaults to config.SUBSCRIPTIONS_FILE.

    Raises:
        ConfigError: If the file is unreadable or invalid.
    """
    path = Path(path or config.SUBSCRIPTIONS_FILE).expanduser()
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read subscription file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    subscriptions = parse_subscriptions(data, config)
    logger.info(f"Loaded {len(subscriptions)} subscriptions from {path}")
    return subscriptions
