"""Progress events emitted by the sync workflow.

The workflow never renders progress itself. It reports ``SyncEvent``s to a
listener callable, and any UI (log lines, progress bars) subscribes to that.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class SyncEventType(str, Enum):
    """Kinds of progress notifications."""

    FETCHING = "fetching"
    QUEUED = "queued"
    EPISODE_STARTED = "episode_started"
    BYTES_WRITTEN = "bytes_written"
    EPISODE_FINISHED = "episode_finished"
    FAILED = "failed"
    AWAITING_HOOKS = "awaiting_hooks"
    COMPLETED = "completed"


@dataclass(frozen=True)
class SyncEvent:
    """A single progress notification for one subscription.

    Attributes:
        subscription: Subscription name.
        type: Event kind.
        episode: Episode title, for episode-level events.
        position: 1-based position of the episode in the queue.
        total: Queue length.
        bytes_written: Bytes on disk for the current episode.
        bytes_total: Expected size of the current episode, if known.
        path: Finalized file path, for EPISODE_FINISHED.
        error: Error message, for FAILED.
    """

    subscription: str
    type: SyncEventType
    episode: Optional[str] = None
    position: int = 0
    total: int = 0
    bytes_written: int = 0
    bytes_total: Optional[int] = None
    path: Optional[Path] = None
    error: Optional[str] = None


SyncListener = Callable[[SyncEvent], None]


class EventCollector:
    """Listener that keeps every event, mostly useful in tests."""

    def __init__(self):
        self.events: List[SyncEvent] = []

    def __call__(self, event: SyncEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: SyncEventType) -> List[SyncEvent]:
        return [event for event in self.events if event.type == event_type]


class LoggingListener:
    """Listener that reports progress through logging."""

    def __call__(self, event: SyncEvent) -> None:
        name = event.subscription
        if event.type == SyncEventType.FETCHING:
            logger.info(f"[{name}] Fetching feed")
        elif event.type == SyncEventType.QUEUED:
            logger.info(f"[{name}] {event.total} episodes to download")
        elif event.type == SyncEventType.EPISODE_STARTED:
            logger.info(f"[{name}] ({event.position}/{event.total}) {event.episode}")
        elif event.type == SyncEventType.BYTES_WRITTEN:
            if event.bytes_total:
                logger.debug(
                    f"[{name}] {event.episode}: "
                    f"{event.bytes_written / 1024 / 1024:.1f} of "
                    f"{event.bytes_total / 1024 / 1024:.1f} MB"
                )
        elif event.type == SyncEventType.EPISODE_FINISHED:
            logger.info(f"[{name}] Saved {event.path}")
        elif event.type == SyncEventType.FAILED:
            logger.error(f"[{name}] {event.error}")
        elif event.type == SyncEventType.AWAITING_HOOKS:
            logger.info(f"[{name}] Waiting for download hooks")
        elif event.type == SyncEventType.COMPLETED:
            logger.info(f"[{name}] Sync complete")
