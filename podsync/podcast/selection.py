"""Release policy deciding which episodes are due and in what order.

Two modes exist:

- ``Backlog`` paces a historical catch-up: episode N unlocks
  ``N * interval_days`` days after ``start`` and stays unlocked.
- ``Standard`` follows the live feed, optionally bounded by age, by the
  number of most recent episodes, and by an earliest publish date.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence, Union

from podsync.exceptions import ConfigError

from .episode import Episode

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class Backlog:
    """Paced catch-up starting at `start`, one episode every `interval_days`."""

    start: datetime
    interval_days: int

    def __post_init__(self):
        if self.interval_days < 1:
            raise ConfigError(
                f"backlog interval must be at least 1 day, got {self.interval_days}"
            )


@dataclass(frozen=True)
class Standard:
    """Live-tail downloading with optional bounds."""

    max_days: Optional[int] = None
    max_episodes: Optional[int] = None
    earliest_date: Optional[datetime] = None


DownloadMode = Union[Backlog, Standard]


def _seconds_between(later: datetime, earlier: datetime) -> int:
    return math.floor((later - earlier).total_seconds())


def is_eligible(
    episode: Episode,
    mode: DownloadMode,
    latest_index: int,
    now: datetime,
) -> bool:
    """Check the mode's release rule for one episode.

    Ledger membership is not considered here; see ``select_episodes``.
    """
    if isinstance(mode, Backlog):
        days_passed = _seconds_between(now, mode.start) // SECONDS_PER_DAY
        unlocked_index = days_passed // mode.interval_days
        return unlocked_index >= episode.index

    if mode.max_days is not None:
        if now - episode.published > timedelta(days=mode.max_days):
            return False

    if mode.max_episodes is not None:
        if latest_index - mode.max_episodes > episode.index:
            return False

    if mode.earliest_date is not None:
        if episode.published < mode.earliest_date:
            return False

    return True


def select_episodes(
    episodes: Sequence[Episode],
    mode: DownloadMode,
    is_downloaded: Callable[[Episode], bool],
    now: Optional[datetime] = None,
) -> List[Episode]:
    """Return the episodes to fetch, in download order.

    Args:
        episodes: All episodes of the feed, with indices assigned.
        mode: Release mode of the subscription.
        is_downloaded: Predicate telling whether the ledger already holds an episode.
        now: Reference time; defaults to the current UTC time.

    Returns:
        Backlog: oldest unlocked first. Standard: newest first.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    latest_index = max((ep.index for ep in episodes), default=-1)

    pending = [
        episode
        for episode in episodes
        if not is_downloaded(episode)
        and is_eligible(episode, mode, latest_index, now)
    ]

    pending.sort(key=lambda ep: ep.index, reverse=isinstance(mode, Standard))
    return pending
