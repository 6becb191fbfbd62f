import os
from typing import Optional

from dotenv import load_dotenv

from podsync.exceptions import ConfigError


def _get_int_env(
    name: str,
    default: int,
    min_val: Optional[int] = None,
    max_val: Optional[int] = None,
) -> int:
    """Parse an integer from an environment variable with validation.

    Args:
        name: Environment variable name.
        default: Default value if env var is not set.
        min_val: Minimum allowed value (inclusive), or None for no minimum.
        max_val: Maximum allowed value (inclusive), or None for no maximum.

    Returns:
        The parsed and validated integer value.

    Raises:
        ConfigError: If the value cannot be parsed as an integer or is out of range.
    """
    raw = os.getenv(name)
    if raw is None:
        return default

    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(
            f"Invalid value for {name}: '{raw}' is not a valid integer"
        )

    if min_val is not None and value < min_val:
        raise ConfigError(
            f"Invalid value for {name}: {value} must be >= {min_val}"
        )

    if max_val is not None and value > max_val:
        raise ConfigError(
            f"Invalid value for {name}: {value} must be <= {max_val}"
        )

    return value


class Config:
    DEFAULT_USER_AGENT = "podsync/1.0 (+https://github.com/podsync/podsync)"

    def __init__(self, env_file=None):
        """
        Load global settings from the environment.

        Loads variables from the given .env file when `env_file` is set, otherwise
        from the default .env discovery. Subscription-specific settings live in the
        subscription file; the values here are process-wide defaults.

        Parameters:
            env_file (str | None): Optional path to a .env file.

        Raises:
            ConfigError: If an integer setting is malformed or out of range.
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        # Subscription list (YAML)
        default_subscriptions = os.path.join(
            os.path.expanduser("~"), ".config", "podsync", "podcasts.yaml"
        )
        self.SUBSCRIPTIONS_FILE = os.getenv(
            "PODSYNC_SUBSCRIPTIONS", default_subscriptions
        )

        # HTTP settings
        self.USER_AGENT = os.getenv("PODSYNC_USER_AGENT", self.DEFAULT_USER_AGENT)
        self.DOWNLOAD_TIMEOUT = _get_int_env(
            "PODSYNC_DOWNLOAD_TIMEOUT", 300, min_val=1
        )
        self.CHUNK_SIZE = _get_int_env("PODSYNC_CHUNK_SIZE", 8192, min_val=1)

        # Thread pool hosting download hook processes
        self.HOOK_WORKERS = _get_int_env("PODSYNC_HOOK_WORKERS", 4, min_val=1)

        # Default patterns, overridable per subscription
        self.DOWNLOAD_PATTERN = os.getenv(
            "PODSYNC_DOWNLOAD_PATTERN", "{home}/{appname}/{podname}"
        )
        self.NAME_PATTERN = os.getenv(
            "PODSYNC_NAME_PATTERN", "{pubdate::%Y-%m-%d} {rss::episode::title}"
        )
        self.ID_PATTERN = os.getenv("PODSYNC_ID_PATTERN", "{guid}")

    def load_config(self):
        """
        Prints selected configuration values useful for debugging.
        """
        print(f"Subscriptions: {self.SUBSCRIPTIONS_FILE}")
        print(f"User agent: {self.USER_AGENT}")
        print(f"Download pattern: {self.DOWNLOAD_PATTERN}")
