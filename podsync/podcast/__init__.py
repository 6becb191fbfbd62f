"""Podcast feed handling.

Provides functionality for:
- RSS feed normalization
- Episode derivation and selection
- Download ledger
- Path and filename patterns
- Resumable downloads and media tags
"""

from .feed_parser import FeedParser, NamespaceEscaper, ParsedFeed, RawChannel, RawEpisode
from .episode import Episode, build_episodes
from .ledger import CompletionLedger, LedgerEntry
from .selection import Backlog, DownloadMode, Standard, select_episodes
from .patterns import PatternContext, evaluate, validate_pattern
from .downloader import DownloadResult, EpisodeDownloader

__all__ = [
    "FeedParser",
    "NamespaceEscaper",
    "ParsedFeed",
    "RawChannel",
    "RawEpisode",
    "Episode",
    "build_episodes",
    "CompletionLedger",
    "LedgerEntry",
    "Backlog",
    "DownloadMode",
    "Standard",
    "select_episodes",
    "PatternContext",
    "evaluate",
    "validate_pattern",
    "DownloadResult",
    "EpisodeDownloader",
]
