"""Tests for the resumable episode downloader."""

import asyncio

import aiohttp
import pytest
from aiohttp import test_utils, web

from podsync.exceptions import DownloadError
from podsync.podcast.downloader import (
    STAGING_SUFFIX,
    EpisodeDownloader,
    infer_extension,
    staging_stem,
)

DATA = bytes(range(256)) * 40  # 10240 bytes
GUID = "episode-guid"


def _range_app(requests_seen, honor_range=True, reject_range=False, content_type="audio/mpeg"):
    """Build an app serving DATA at /ep, recording every Range header."""
    async def handler(request):
        range_header = request.headers.get("Range")
        requests_seen.append(range_header)
        if range_header and reject_range:
            return web.Response(status=416, headers={"Content-Range": f"bytes */{len(DATA)}"})
        if range_header and honor_range:
            start = int(range_header.split("=")[1].rstrip("-"))
            return web.Response(
                status=206,
                body=DATA[start:],
                content_type=content_type,
                headers={"Content-Range": f"bytes {start}-{len(DATA) - 1}/{len(DATA)}"},
            )
        return web.Response(body=DATA, content_type=content_type)

    app = web.Application()
    app.router.add_get("/ep", handler)
    return app


async def _download(app, directory, path="/ep", **kwargs):
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        async with aiohttp.ClientSession() as session:
            downloader = EpisodeDownloader(session, chunk_size=1024)
            return await downloader.download(str(server.make_url(path)), GUID, directory, **kwargs)
    finally:
        await server.close()


class TestInferExtension:
    """Tests for extension inference."""

    def test_known_content_types(self):
        """Test the canonical mapping, with parameters ignored."""
        assert infer_extension("audio/mpeg") == ".mp3"
        assert infer_extension("audio/x-m4a; charset=binary") == ".m4a"
        assert infer_extension("AUDIO/OGG") == ".ogg"

    def test_falls_back_to_url(self):
        """Test that generic types defer to the URL suffix."""
        assert infer_extension("application/octet-stream", "https://a.com/x/ep.m4a?t=1") == ".m4a"
        assert infer_extension(None, "https://a.com/ep%201.OGG") == ".ogg"

    def test_default(self):
        """Test the final default."""
        assert infer_extension(None, None) == ".mp3"
        assert infer_extension("", "https://a.com/download") == ".mp3"


class TestStaging:
    """Tests for staging file naming."""

    def test_stem_is_stable_and_safe(self):
        """Test that the stem depends only on the guid."""
        assert staging_stem("a/b:c") == staging_stem("a/b:c")
        assert staging_stem("a") != staging_stem("b")
        assert len(staging_stem("a/b:c")) == 16
        assert "/" not in staging_stem("a/b:c")


class TestEpisodeDownloader:
    """Tests for EpisodeDownloader.download."""

    def test_fresh_download(self, tmp_path):
        """Test a download without a staging file."""
        seen = []
        result = asyncio.run(_download(_range_app(seen), tmp_path))

        assert seen == [None]
        assert result.path.read_bytes() == DATA
        assert result.path.suffix == ".mp3"
        assert result.path.stem == staging_stem(GUID)
        assert result.size == len(DATA)
        assert result.resumed_from == 0
        assert not list(tmp_path.glob(f"*{STAGING_SUFFIX}"))

    def test_resume_requests_remaining_range(self, tmp_path):
        """Test that an existing staging file is continued, not restarted."""
        offset = 4000
        staging = tmp_path / f"{staging_stem(GUID)}{STAGING_SUFFIX}"
        staging.write_bytes(DATA[:offset])

        seen = []
        result = asyncio.run(_download(_range_app(seen), tmp_path))

        assert seen == [f"bytes={offset}-"]
        assert result.resumed_from == offset
        assert result.size == len(DATA)
        assert result.path.read_bytes() == DATA

    def test_ignored_range_restarts(self, tmp_path):
        """Test that a 200 reply to a range request rewrites the file."""
        staging = tmp_path / f"{staging_stem(GUID)}{STAGING_SUFFIX}"
        staging.write_bytes(b"stale bytes")

        seen = []
        result = asyncio.run(_download(_range_app(seen, honor_range=False), tmp_path))

        assert result.path.read_bytes() == DATA

    def test_rejected_range_restarts(self, tmp_path):
        """Test that a 416 reply truncates and downloads from scratch."""
        staging = tmp_path / f"{staging_stem(GUID)}{STAGING_SUFFIX}"
        staging.write_bytes(b"x" * (len(DATA) + 10))

        seen = []
        result = asyncio.run(_download(_range_app(seen, reject_range=True), tmp_path))

        assert seen == [f"bytes={len(DATA) + 10}-", None]
        assert result.path.read_bytes() == DATA

    def test_rejected_range_on_complete_staging(self, tmp_path):
        """Test that a 416 for a fully staged file finishes without refetching."""
        staging = tmp_path / f"{staging_stem(GUID)}{STAGING_SUFFIX}"
        staging.write_bytes(DATA)

        seen = []
        progress = []
        result = asyncio.run(_download(
            _range_app(seen, reject_range=True), tmp_path,
            progress_callback=lambda written, total: progress.append((written, total)),
        ))

        assert seen == [f"bytes={len(DATA)}-"]
        assert result.path.read_bytes() == DATA
        assert result.path.suffix == ".mp3"
        assert result.size == len(DATA)
        assert result.content_type is None
        assert progress == [(len(DATA), len(DATA))]
        assert not staging.exists()

    def test_extension_from_content_type(self, tmp_path):
        """Test that the final extension follows the content type."""
        result = asyncio.run(_download(_range_app([], content_type="audio/x-m4a"), tmp_path))

        assert result.path.suffix == ".m4a"
        assert result.content_type.startswith("audio/x-m4a")

    def test_progress_callback(self, tmp_path):
        """Test that progress is reported with the expected total."""
        progress = []
        asyncio.run(_download(
            _range_app([]), tmp_path,
            progress_callback=lambda written, total: progress.append((written, total)),
        ))

        assert progress
        assert progress[-1] == (len(DATA), len(DATA))
        assert all(total == len(DATA) for _, total in progress)

    def test_http_error(self, tmp_path):
        """Test that an HTTP error raises DownloadError and keeps staging."""
        async def handler(request):
            return web.Response(status=404)

        app = web.Application()
        app.router.add_get("/ep", handler)

        with pytest.raises(DownloadError):
            asyncio.run(_download(app, tmp_path))

        assert (tmp_path / f"{staging_stem(GUID)}{STAGING_SUFFIX}").exists()

    def test_missing_content_length(self, tmp_path):
        """Test that a response without Content-Length is rejected."""
        async def handler(request):
            response = web.StreamResponse()
            response.enable_chunked_encoding()
            await response.prepare(request)
            await response.write(DATA)
            await response.write_eof()
            return response

        app = web.Application()
        app.router.add_get("/ep", handler)

        with pytest.raises(DownloadError):
            asyncio.run(_download(app, tmp_path))

    def test_connection_error(self, tmp_path):
        """Test that transport errors become DownloadError."""
        async def run():
            async with aiohttp.ClientSession() as session:
                downloader = EpisodeDownloader(session)
                return await downloader.download("http://127.0.0.1:1/ep", GUID, tmp_path)

        with pytest.raises(DownloadError):
            asyncio.run(run())


class TestFetchBytes:
    """Tests for EpisodeDownloader.fetch_bytes."""

    def test_fetch_and_error(self):
        """Test fetching a small resource and failing on HTTP errors."""
        async def image(request):
            return web.Response(body=b"\x89PNGdata", content_type="image/png")

        async def run():
            app = web.Application()
            app.router.add_get("/img.png", image)
            server = test_utils.TestServer(app)
            await server.start_server()
            try:
                async with aiohttp.ClientSession() as session:
                    downloader = EpisodeDownloader(session)
                    data = await downloader.fetch_bytes(str(server.make_url("/img.png")))
                    with pytest.raises(DownloadError):
                        await downloader.fetch_bytes(str(server.make_url("/missing.png")))
                    return data
            finally:
                await server.close()

        assert asyncio.run(run()) == b"\x89PNGdata"
