"""Post-processing of downloaded episodes.

Tags, names and records each finished download, then hands the final file
to the user's download hook in a background thread so the next episode can
start right away.
"""

import asyncio
import logging
import os
import subprocess
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from podsync.exceptions import HookError, TagError
from podsync.podcast.downloader import DownloadResult
from podsync.podcast.episode import Episode
from podsync.podcast.feed_parser import RawChannel
from podsync.podcast.ledger import CompletionLedger
from podsync.podcast.patterns import PatternContext, evaluate, sanitize_filename
from podsync.podcast.tags import write_episode_tags
from podsync.subscriptions import SubscriptionConfig

logger = logging.getLogger(__name__)

TagWriter = Callable[..., Optional[Mapping[str, str]]]


@dataclass
class EpisodeJob:
    """Everything post-processing needs to know about one episode."""

    subscription: SubscriptionConfig
    channel: RawChannel
    episode: Episode
    directory: Path
    ledger: CompletionLedger
    artwork: Optional[bytes] = None


@dataclass
class HookJob:
    """A download hook running in the background."""

    path: Path
    future: Optional[Future] = None


@dataclass
class PostProcessingStats:
    """Thread-safe statistics for post-processing operations."""

    episodes_processed: int = 0
    tag_failures: int = 0
    hooks_succeeded: int = 0
    hooks_failed: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def increment_episodes_processed(self) -> None:
        with self._lock:
            self.episodes_processed += 1

    def increment_tag_failures(self) -> None:
        with self._lock:
            self.tag_failures += 1

    def increment_hooks_succeeded(self) -> None:
        with self._lock:
            self.hooks_succeeded += 1

    def increment_hooks_failed(self) -> None:
        with self._lock:
            self.hooks_failed += 1


def episode_id(subscription: SubscriptionConfig, channel: Optional[RawChannel], episode: Episode) -> str:
    """Ledger id of an episode, from the id pattern (no tag context)."""
    context = PatternContext(podname=subscription.name, channel=channel, episode=episode)
    return evaluate(subscription.id_pattern, context)


class PostProcessor:
    """Finalizes downloaded episodes.

    For each download, in order:
    1. Write media tags (optional; failures are logged and skipped)
    2. Rename the file to the evaluated filename pattern
    3. Append the episode id to the ledger
    4. Start the download hook in the thread pool, if configured

    Example:
        post_processor = PostProcessor(hook_workers=2)
        post_processor.start()
        path = post_processor.process(job, download)
        await post_processor.wait_for_hooks()
        post_processor.stop()
    """

    def __init__(
        self,
        tag_writer: TagWriter = write_episode_tags,
        hook_workers: int = 4,
    ):
        """Initialize the post-processor.

        Args:
            tag_writer: Callable writing tags; see podsync.podcast.tags.write_episode_tags.
            hook_workers: Thread pool size for hook processes.
        """
        self.tag_writer = tag_writer
        self.hook_workers = hook_workers

        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending_hooks: Dict[int, HookJob] = {}
        self._lock = threading.Lock()
        self._stats = PostProcessingStats()
        self._next_job = 0

    def start(self) -> None:
        """Start the hook thread pool."""
        self._executor = ThreadPoolExecutor(
            max_workers=self.hook_workers,
            thread_name_prefix="hook",
        )
        logger.debug(f"PostProcessor started with {self.hook_workers} hook workers")

    def stop(self, wait: bool = True) -> None:
        """Stop the thread pool, optionally waiting for running hooks."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
            logger.debug("PostProcessor stopped")

    def get_pending_count(self) -> int:
        """Return the number of hooks still running."""
        with self._lock:
            return len(self._pending_hooks)

    def get_stats(self) -> PostProcessingStats:
        """Get current post-processing statistics."""
        return self._stats

    def process(self, job: EpisodeJob, download: DownloadResult) -> Path:
        """Run the post-processing chain for one download.

        Args:
            job: Episode, channel and subscription context.
            download: Result of the download engine.

        Returns:
            Final path of the episode file.
        """
        subscription = job.subscription
        tags = None

        if subscription.write_tags:
            tags = self._write_tags(job, download.path)

        final_path = self._rename(job, download.path, tags)

        entry_id = episode_id(subscription, job.channel, job.episode)
        job.ledger.append(entry_id, job.episode.title)

        if subscription.download_hook:
            self.submit_hook(subscription.download_hook, final_path)

        self._stats.increment_episodes_processed()
        return final_path

    def _write_tags(self, job: EpisodeJob, path: Path) -> Optional[Mapping[str, str]]:
        try:
            return self.tag_writer(
                path,
                job.channel,
                job.episode,
                job.subscription.tag_overrides,
                job.artwork,
            )
        except TagError as e:
            logger.warning(f"[{job.subscription.name}] {e}")
            self._stats.increment_tag_failures()
            return None

    def _rename(self, job: EpisodeJob, path: Path, tags: Optional[Mapping[str, str]]) -> Path:
        context = PatternContext(
            podname=job.subscription.name,
            channel=job.channel,
            episode=job.episode,
            tags=tags,
        )
        name = sanitize_filename(evaluate(job.subscription.name_pattern, context))
        final_path = job.directory / f"{name}{path.suffix}"
        os.replace(path, final_path)
        logger.debug(f"Renamed {path.name} -> {final_path.name}")
        return final_path

    def submit_hook(self, hook: str, path: Path) -> None:
        """Run `hook` with `path` as its argument without blocking.

        Raises:
            RuntimeError: If start() has not been called.
        """
        if self._executor is None:
            raise RuntimeError("PostProcessor not started")

        with self._lock:
            job_id = self._next_job
            self._next_job += 1
            job = HookJob(path=path)
            job.future = self._executor.submit(self._run_hook, hook, path)
            self._pending_hooks[job_id] = job

        job.future.add_done_callback(lambda f: self._on_hook_complete(job_id, f))
        logger.debug(f"Submitted download hook for {path}")

    def _run_hook(self, hook: str, path: Path) -> None:
        try:
            proc = subprocess.run(
                [hook, str(path)],
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise HookError(f"Cannot run download hook {hook}: {e}") from e

        if proc.returncode != 0:
            output = (proc.stderr or proc.stdout or "").strip()
            raise HookError(
                f"Download hook {hook} exited with {proc.returncode} for {path}: {output}"
            )

    def _on_hook_complete(self, job_id: int, future: Future) -> None:
        """Callback when a hook finishes."""
        with self._lock:
            self._pending_hooks.pop(job_id, None)

        exc = future.exception()
        if exc:
            logger.error(f"{exc}")
            self._stats.increment_hooks_failed()
        else:
            self._stats.increment_hooks_succeeded()

    async def wait_for_hooks(self) -> None:
        """Wait until every submitted hook has finished.

        Hook failures are logged by the completion callback and never raised.
        """
        with self._lock:
            futures: List[Future] = [
                job.future for job in self._pending_hooks.values() if job.future
            ]
        if not futures:
            return
        logger.info(f"Waiting for {len(futures)} download hooks to finish...")
        await asyncio.gather(
            *(asyncio.wrap_future(f) for f in futures),
            return_exceptions=True,
        )
