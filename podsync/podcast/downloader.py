"""Resumable episode downloader.

Downloads podcast media with support for:
- Resuming interrupted downloads from the staging file
- Streaming straight to disk
- Progress callbacks after every chunk
- Extension inference from the response content type
"""

import asyncio
import hashlib
import logging
import mimetypes
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple
from urllib.parse import unquote, urlparse

import aiohttp

from podsync.exceptions import DownloadError

logger = logging.getLogger(__name__)

STAGING_SUFFIX = ".partial"

# Canonical extensions for common podcast content types
MIME_TO_EXT = {
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/mpeg3": ".mp3",
    "audio/x-mpeg": ".mp3",
    "audio/mp4": ".m4a",
    "audio/x-m4a": ".m4a",
    "audio/m4a": ".m4a",
    "audio/aac": ".aac",
    "audio/ogg": ".ogg",
    "audio/opus": ".opus",
    "audio/flac": ".flac",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "video/mp4": ".mp4",
}

# Preferred when a content type maps to several extensions
PREFERRED_EXTENSIONS = (".mp3", ".m4a", ".ogg", ".opus", ".aac", ".flac", ".wav", ".mp4")

DEFAULT_EXTENSION = ".mp3"


UNSATISFIED_RANGE = re.compile(r"bytes\s+\*/(\d+)")


def _unsatisfied_length(content_range: Optional[str]) -> Optional[int]:
    """Read the full object size from a 416 reply's ``bytes */N`` header."""
    match = UNSATISFIED_RANGE.fullmatch((content_range or "").strip())
    return int(match.group(1)) if match else None


def infer_extension(content_type: Optional[str], url: Optional[str] = None) -> str:
    """Pick a file extension for downloaded media.

    Args:
        content_type: Response Content-Type header, parameters allowed.
        url: Media URL, consulted when the content type says nothing useful.

    Returns:
        Extension including the leading dot.
    """
    mime = (content_type or "").split(";", 1)[0].strip().lower()

    if mime in MIME_TO_EXT:
        return MIME_TO_EXT[mime]

    if mime:
        candidates = mimetypes.guess_all_extensions(mime, strict=False)
        for preferred in PREFERRED_EXTENSIONS:
            if preferred in candidates:
                return preferred
        if candidates and mime != "application/octet-stream":
            return candidates[0]

    if url:
        path = unquote(urlparse(url).path)
        _, ext = os.path.splitext(path)
        if ext and len(ext) <= 6:
            return ext.lower()

    return DEFAULT_EXTENSION


def staging_stem(guid: str) -> str:
    """Deterministic, filesystem-safe stem for an episode's staging files."""
    return hashlib.sha1(guid.encode("utf-8")).hexdigest()[:16]


@dataclass
class DownloadResult:
    """Result of a completed download.

    ``path`` carries the inferred extension but not yet the final name.
    """

    path: Path
    content_type: Optional[str]
    size: int
    resumed_from: int = 0


class EpisodeDownloader:
    """Downloads episode media into a staging file that survives interruption.

    Example:
        async with aiohttp.ClientSession() as session:
            downloader = EpisodeDownloader(session)
            result = await downloader.download(url, guid, Path("/tmp/show"))
    """

    DEFAULT_CHUNK_SIZE = 8192

    def __init__(
        self,
        session: aiohttp.ClientSession,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        progress_callback: Optional[Callable[[int, Optional[int]], None]] = None,
    ):
        """Initialize the episode downloader.

        Args:
            session: Shared aiohttp session (carries user agent and timeouts).
            chunk_size: Chunk size for streaming downloads.
            progress_callback: Called after each chunk with (bytes_written, total_bytes).
        """
        self.session = session
        self.chunk_size = chunk_size
        self.progress_callback = progress_callback

    def staging_path(self, directory: Path, guid: str) -> Path:
        """Path of the in-progress file for an episode."""
        return Path(directory) / f"{staging_stem(guid)}{STAGING_SUFFIX}"

    async def download(
        self,
        url: str,
        guid: str,
        directory: Path,
        progress_callback: Optional[Callable[[int, Optional[int]], None]] = None,
    ) -> DownloadResult:
        """Download one episode, resuming any previous partial transfer.

        Args:
            url: Media URL.
            guid: Episode guid, used to name the staging file.
            directory: Directory holding the staging file.
            progress_callback: Overrides the instance callback for this download.

        Returns:
            DownloadResult pointing at the completed file.

        Raises:
            DownloadError: On network, HTTP, length or file-system failures.
        """
        callback = progress_callback or self.progress_callback
        staging = self.staging_path(directory, guid)

        try:
            Path(directory).mkdir(parents=True, exist_ok=True)
            staging.touch(exist_ok=True)
            offset = staging.stat().st_size
        except OSError as e:
            raise DownloadError(f"Cannot prepare staging file {staging}: {e}", url=url) from e

        if offset:
            logger.info(f"Resuming {url} from byte {offset}")

        try:
            content_type, written = await self._transfer(url, staging, offset, callback)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DownloadError(f"Download failed for {url}: {e}", url=url) from e
        except OSError as e:
            raise DownloadError(f"Cannot write {staging}: {e}", url=url) from e

        final = staging.with_suffix(infer_extension(content_type, url))
        try:
            os.replace(staging, final)
        except OSError as e:
            raise DownloadError(f"Cannot rename {staging}: {e}", url=url) from e

        return DownloadResult(
            path=final,
            content_type=content_type,
            size=written,
            resumed_from=offset,
        )

    async def _transfer(
        self,
        url: str,
        staging: Path,
        offset: int,
        callback: Optional[Callable[[int, Optional[int]], None]],
    ) -> Tuple[Optional[str], int]:
        """Stream the remote object into `staging` starting at `offset`.

        Returns:
            Tuple of (content_type, total_file_size).
        """
        headers = {"Range": f"bytes={offset}-"} if offset else {}

        async with self.session.get(url, headers=headers, allow_redirects=True) as response:
            if offset and response.status == 416:
                if _unsatisfied_length(response.headers.get("Content-Range")) == offset:
                    # Staging already holds every byte; the 416 body is not media
                    logger.info(f"Staging for {url} is already complete ({offset} bytes)")
                    if callback:
                        callback(offset, offset)
                    return None, offset
                # Staging content no longer matches the remote object
                logger.warning(f"Range rejected for {url}, restarting download")
                staging.write_bytes(b"")
                return await self._transfer(url, staging, 0, callback)

            if response.status >= 400:
                raise DownloadError(
                    f"HTTP {response.status} for {url}", url=url
                )

            if offset and response.status != 206:
                logger.warning(f"Server ignored range request for {url}, restarting download")
                offset = 0

            length = response.content_length
            if length is None:
                raise DownloadError(f"Response for {url} has no Content-Length", url=url)

            total = offset + length
            written = offset
            mode = "ab" if offset else "wb"

            with open(staging, mode) as f:
                async for chunk in response.content.iter_chunked(self.chunk_size):
                    if chunk:
                        f.write(chunk)
                        written += len(chunk)
                        if callback:
                            callback(written, total)
                f.flush()
                os.fsync(f.fileno())

            if written < total:
                raise DownloadError(
                    f"Connection closed after {written} of {total} bytes for {url}",
                    url=url,
                )

            return response.headers.get("Content-Type"), written

    async def fetch_bytes(self, url: str) -> bytes:
        """Fetch a small resource such as cover art into memory.

        Raises:
            DownloadError: On network or HTTP failures.
        """
        try:
            async with self.session.get(url, allow_redirects=True) as response:
                if response.status >= 400:
                    raise DownloadError(f"HTTP {response.status} for {url}", url=url)
                return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DownloadError(f"Failed to fetch {url}: {e}", url=url) from e
