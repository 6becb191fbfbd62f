"""
Pytest configuration and fixtures for podsync tests.

This module runs before any test imports, setting up the test environment.
Environment variables are explicitly set to ensure deterministic test behavior
regardless of external environment configuration.
"""

import os

import pytest

# Force default patterns and HTTP settings for tests
os.environ["PODSYNC_USER_AGENT"] = "podsync-tests/1.0"
os.environ["PODSYNC_DOWNLOAD_PATTERN"] = "{home}/{appname}/{podname}"
os.environ["PODSYNC_NAME_PATTERN"] = "{pubdate::%Y-%m-%d} {rss::episode::title}"
os.environ["PODSYNC_ID_PATTERN"] = "{guid}"
os.environ["PODSYNC_DOWNLOAD_TIMEOUT"] = "30"
os.environ["PODSYNC_CHUNK_SIZE"] = "1024"
os.environ["PODSYNC_HOOK_WORKERS"] = "2"


def make_feed(items, title="Test Podcast", extra_channel=""):
    """
    Build an RSS document from item dicts.

    Each item dict accepts: title, guid, pub_date, url, and an optional
    `extra` string of raw XML appended inside the <item>.
    """
    rendered = []
    for item in items:
        parts = [f"<title>{item['title']}</title>"]
        if item.get("guid"):
            parts.append(f"<guid>{item['guid']}</guid>")
        if item.get("pub_date"):
            parts.append(f"<pubDate>{item['pub_date']}</pubDate>")
        if item.get("url"):
            parts.append(f'<enclosure url="{item["url"]}" length="0" type="audio/mpeg"/>')
        parts.append(item.get("extra", ""))
        rendered.append("<item>" + "".join(parts) + "</item>")

    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">'
        f"<channel><title>{title}</title>{extra_channel}"
        + "".join(rendered)
        + "</channel></rss>"
    )


@pytest.fixture
def feed_builder():
    """Provide the make_feed helper to tests."""
    return make_feed
