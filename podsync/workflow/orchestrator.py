"""Concurrent sync orchestrator for podcast subscriptions.

Every subscription runs as its own asyncio task sharing one HTTP session.
Within a subscription, episodes are downloaded and post-processed strictly
one after another so that the ledger order follows the download queue.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import aiohttp

from podsync.config import Config
from podsync.exceptions import DownloadError, FetchError, ParseError
from podsync.podcast.downloader import EpisodeDownloader
from podsync.podcast.episode import Episode, build_episodes
from podsync.podcast.feed_parser import FeedParser, ParsedFeed
from podsync.podcast.ledger import CompletionLedger
from podsync.podcast.patterns import PatternContext, evaluate
from podsync.podcast.selection import select_episodes
from podsync.podcast.tags import write_episode_tags
from podsync.subscriptions import SubscriptionConfig
from podsync.workflow.events import LoggingListener, SyncEvent, SyncEventType, SyncListener
from podsync.workflow.post_processor import (
    EpisodeJob,
    PostProcessingStats,
    PostProcessor,
    TagWriter,
    episode_id,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SubscriptionResult:
    """Outcome of syncing one subscription."""

    name: str
    paths: List[Path] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SyncStats:
    """Statistics for a sync run."""

    started_at: datetime = field(default_factory=_utc_now)
    stopped_at: Optional[datetime] = None

    subscriptions: int = 0
    subscriptions_failed: int = 0
    episodes_downloaded: int = 0

    post_processing: Optional[PostProcessingStats] = None

    @property
    def duration_seconds(self) -> float:
        """Duration of the run in seconds."""
        end = self.stopped_at or _utc_now()
        return (end - self.started_at).total_seconds()


class SyncOrchestrator:
    """Runs every subscription concurrently with isolated failures.

    A subscription whose feed cannot be fetched or parsed is skipped; one whose
    download fails stops at that episode. Neither affects the others.

    Example:
        config = Config()
        subscriptions = load_subscriptions(config)
        orchestrator = SyncOrchestrator(config, subscriptions)
        paths = asyncio.run(orchestrator.sync())
    """

    def __init__(
        self,
        config: Config,
        subscriptions: Sequence[SubscriptionConfig],
        listener: Optional[SyncListener] = None,
        tag_writer: Optional[TagWriter] = None,
        clock: Optional[Clock] = None,
    ):
        """Initialize the orchestrator.

        Args:
            config: Global configuration (user agent, timeouts, hook workers).
            subscriptions: Subscriptions to sync.
            listener: Receives progress events; defaults to logging them.
            tag_writer: Replaces the mutagen tag writer.
            clock: Returns the current time; used by the selection policy.
        """
        self.config = config
        self.subscriptions = list(subscriptions)
        self.listener = listener or LoggingListener()
        self.tag_writer = tag_writer or write_episode_tags
        self.clock = clock or _utc_now
        self.feed_parser = FeedParser()

        self.results: List[SubscriptionResult] = []
        self._stats = SyncStats()

    def get_stats(self) -> SyncStats:
        """Get statistics of the last run."""
        return self._stats

    def _emit(self, subscription: SubscriptionConfig, event_type: SyncEventType, **kwargs) -> None:
        try:
            self.listener(SyncEvent(subscription=subscription.name, type=event_type, **kwargs))
        except Exception:
            logger.exception(f"Progress listener failed on {event_type.value}")

    def _validate(self) -> None:
        for subscription in self.subscriptions:
            subscription.validate()

    def _open_session(self) -> aiohttp.ClientSession:
        timeout = aiohttp.ClientTimeout(
            total=None,
            sock_connect=30,
            sock_read=self.config.DOWNLOAD_TIMEOUT,
        )
        return aiohttp.ClientSession(
            headers={"User-Agent": self.config.USER_AGENT},
            timeout=timeout,
        )

    def download_directory(self, subscription: SubscriptionConfig, feed: ParsedFeed) -> Path:
        """Evaluate the subscription's download directory pattern."""
        context = PatternContext(podname=subscription.name, channel=feed.channel)
        return Path(evaluate(subscription.download_pattern, context)).expanduser()

    def _select(
        self,
        subscription: SubscriptionConfig,
        feed: ParsedFeed,
        ledger: CompletionLedger,
    ) -> List[Episode]:
        episodes = build_episodes(feed.channel, feed.episodes)
        return select_episodes(
            episodes,
            subscription.mode,
            lambda ep: episode_id(subscription, feed.channel, ep) in ledger,
            now=self.clock(),
        )

    async def sync(self) -> List[Path]:
        """Sync every subscription.

        Returns:
            Finalized episode paths across all subscriptions.

        Raises:
            ConfigError: If any pattern is invalid; nothing is fetched or written.
        """
        self._validate()

        logger.info(f"Starting sync of {len(self.subscriptions)} subscriptions")
        self._stats = SyncStats(subscriptions=len(self.subscriptions))
        self.results = []

        post_processor = PostProcessor(
            tag_writer=self.tag_writer,
            hook_workers=self.config.HOOK_WORKERS,
        )
        post_processor.start()

        try:
            async with self._open_session() as session:
                downloader = EpisodeDownloader(session, chunk_size=self.config.CHUNK_SIZE)
                outcomes = await asyncio.gather(
                    *(
                        self._sync_subscription(subscription, session, downloader, post_processor)
                        for subscription in self.subscriptions
                    ),
                    return_exceptions=True,
                )
            await post_processor.wait_for_hooks()
        finally:
            post_processor.stop(wait=True)

        paths: List[Path] = []
        for subscription, outcome in zip(self.subscriptions, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"[{subscription.name}] Unexpected error: {outcome}",
                    exc_info=outcome,
                )
                outcome = SubscriptionResult(name=subscription.name, error=str(outcome))
            if not outcome.ok:
                self._stats.subscriptions_failed += 1
            self.results.append(outcome)
            paths.extend(outcome.paths)

        self._stats.episodes_downloaded = len(paths)
        self._stats.post_processing = post_processor.get_stats()
        self._stats.stopped_at = _utc_now()
        logger.info(
            f"Sync finished. Stats: "
            f"downloaded={self._stats.episodes_downloaded}, "
            f"failed_subscriptions={self._stats.subscriptions_failed}, "
            f"duration={self._stats.duration_seconds:.1f}s"
        )
        return paths

    async def _sync_subscription(
        self,
        subscription: SubscriptionConfig,
        session: aiohttp.ClientSession,
        downloader: EpisodeDownloader,
        post_processor: PostProcessor,
    ) -> SubscriptionResult:
        result = SubscriptionResult(name=subscription.name)

        self._emit(subscription, SyncEventType.FETCHING)
        try:
            feed = await self.feed_parser.parse_url(session, subscription.url)
        except (FetchError, ParseError) as e:
            result.error = str(e)
            self._emit(subscription, SyncEventType.FAILED, error=result.error)
            return result

        directory = self.download_directory(subscription, feed)
        ledger = CompletionLedger.load(directory)
        queue = self._select(subscription, feed, ledger)
        self._emit(subscription, SyncEventType.QUEUED, total=len(queue))

        artwork_cache: Dict[str, Optional[bytes]] = {}
        total = len(queue)

        for position, episode in enumerate(queue, start=1):
            self._emit(
                subscription,
                SyncEventType.EPISODE_STARTED,
                episode=episode.title,
                position=position,
                total=total,
            )

            def on_progress(written: int, expected: Optional[int], episode=episode, position=position) -> None:
                self._emit(
                    subscription,
                    SyncEventType.BYTES_WRITTEN,
                    episode=episode.title,
                    position=position,
                    total=total,
                    bytes_written=written,
                    bytes_total=expected,
                )

            try:
                download = await downloader.download(
                    episode.url, episode.guid, directory, progress_callback=on_progress
                )
            except DownloadError as e:
                result.error = str(e)
                self._emit(
                    subscription,
                    SyncEventType.FAILED,
                    episode=episode.title,
                    position=position,
                    total=total,
                    error=result.error,
                )
                break

            artwork = None
            if subscription.write_tags:
                artwork = await self._fetch_artwork(downloader, episode, artwork_cache)

            job = EpisodeJob(
                subscription=subscription,
                channel=feed.channel,
                episode=episode,
                directory=directory,
                ledger=ledger,
                artwork=artwork,
            )
            try:
                final_path = post_processor.process(job, download)
            except OSError as e:
                logger.error(f"[{subscription.name}] Could not finalize {episode.title}: {e}")
                result.error = str(e)
                self._emit(
                    subscription,
                    SyncEventType.FAILED,
                    episode=episode.title,
                    position=position,
                    total=total,
                    error=str(e),
                )
                break
            result.paths.append(final_path)
            self._emit(
                subscription,
                SyncEventType.EPISODE_FINISHED,
                episode=episode.title,
                position=position,
                total=total,
                path=final_path,
            )

        if subscription.download_hook:
            self._emit(subscription, SyncEventType.AWAITING_HOOKS)
        self._emit(subscription, SyncEventType.COMPLETED, total=len(result.paths))
        return result

    async def _fetch_artwork(
        self,
        downloader: EpisodeDownloader,
        episode: Episode,
        cache: Dict[str, Optional[bytes]],
    ) -> Optional[bytes]:
        """Fetch cover art once per URL; failures leave the episode without art."""
        url = episode.image_url
        if not url:
            return None
        if url not in cache:
            try:
                cache[url] = await downloader.fetch_bytes(url)
            except DownloadError as e:
                logger.warning(f"Could not fetch artwork {url}: {e}")
                cache[url] = None
        return cache[url]

    async def pending(self) -> Dict[str, List[Episode]]:
        """Compute each subscription's download queue without downloading.

        Subscriptions whose feed or ledger fails are reported with an empty queue.

        Raises:
            ConfigError: If any pattern is invalid.
        """
        self._validate()

        async with self._open_session() as session:
            outcomes = await asyncio.gather(
                *(self._pending_subscription(subscription, session) for subscription in self.subscriptions),
                return_exceptions=True,
            )

        queues = {}
        for subscription, outcome in zip(self.subscriptions, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"[{subscription.name}] Could not compute queue: {outcome}",
                    exc_info=outcome,
                )
                self._emit(subscription, SyncEventType.FAILED, error=str(outcome))
                outcome = []
            queues[subscription.name] = outcome
        return queues

    async def _pending_subscription(
        self, subscription: SubscriptionConfig, session: aiohttp.ClientSession
    ) -> List[Episode]:
        try:
            feed = await self.feed_parser.parse_url(session, subscription.url)
        except (FetchError, ParseError) as e:
            self._emit(subscription, SyncEventType.FAILED, error=str(e))
            return []

        directory = self.download_directory(subscription, feed)
        ledger = CompletionLedger.load(directory)
        return self._select(subscription, feed, ledger)
