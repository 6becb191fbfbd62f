"""Exceptions raised by the podsync sync engine.

Each error is scoped to the smallest unit of work that can be abandoned:

    PodsyncError (base)
    ├── ConfigError   - bad configuration; aborts the whole run
    ├── FetchError    - feed could not be fetched; aborts one subscription
    ├── ParseError    - feed could not be normalized; aborts one subscription
    ├── DownloadError - episode transfer failed; stops one subscription's queue
    ├── TagError      - tag writing failed; logged, episode continues
    └── HookError     - post-download hook failed; logged only
"""

from typing import Optional


class PodsyncError(Exception):
    """Base exception for all podsync errors."""


class ConfigError(PodsyncError):
    """Raised when configuration is invalid or cannot be read.

    Attributes:
        subscription: Name of the offending subscription, if any.
    """

    def __init__(self, message: str, subscription: Optional[str] = None):
        self.subscription = subscription
        if subscription:
            message = f"[{subscription}] {message}"
        super().__init__(message)


class FetchError(PodsyncError):
    """Raised when a feed cannot be retrieved."""

    def __init__(self, message: str, url: Optional[str] = None):
        self.url = url
        super().__init__(message)


class ParseError(PodsyncError):
    """Raised when feed text cannot be normalized into channel and items."""


class DownloadError(PodsyncError):
    """Raised when an episode's media cannot be downloaded."""

    def __init__(self, message: str, url: Optional[str] = None):
        self.url = url
        super().__init__(message)


class TagError(PodsyncError):
    """Raised when media tags cannot be written."""


class HookError(PodsyncError):
    """Raised when the post-download hook program fails."""
