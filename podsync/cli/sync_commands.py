"""CLI commands for podcast syncing.

Provides commands for:
- Syncing every subscription (default)
- Checking the configuration
- Listing episodes that would be downloaded
"""

import asyncio
import logging
import sys
from typing import List

from ..argparse_shared import add_log_level_argument, add_subscriptions_argument, get_base_parser
from ..config import Config
from ..exceptions import ConfigError
from ..podcast.selection import Backlog
from ..subscriptions import SubscriptionConfig, load_subscriptions
from ..workflow.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


def sync_podcasts(args, config: Config, subscriptions: List[SubscriptionConfig]) -> int:
    """
    Download new episodes for every subscription and print their final paths.

    Returns:
        Exit status: 0 when every subscription synced, 2 when some failed.
    """
    orchestrator = SyncOrchestrator(config, subscriptions)
    paths = asyncio.run(orchestrator.sync())

    for path in paths:
        print(path)

    failed = [result for result in orchestrator.results if not result.ok]
    if failed:
        print(f"\n{len(failed)} subscriptions failed:", file=sys.stderr)
        for result in failed:
            print(f"  - {result.name}: {result.error}", file=sys.stderr)
        return 2
    return 0


def check_config(args, config: Config, subscriptions: List[SubscriptionConfig]) -> int:
    """Print the loaded configuration; loading already validated it."""
    config.load_config()
    print(f"\n{len(subscriptions)} subscriptions:")
    for subscription in subscriptions:
        mode = subscription.mode
        if isinstance(mode, Backlog):
            mode_desc = f"backlog from {mode.start:%Y-%m-%d}, every {mode.interval_days} days"
        else:
            limits = []
            if mode.max_days is not None:
                limits.append(f"max {mode.max_days} days")
            if mode.max_episodes is not None:
                limits.append(f"max {mode.max_episodes} episodes")
            if mode.earliest_date is not None:
                limits.append(f"since {mode.earliest_date:%Y-%m-%d}")
            mode_desc = "standard" + (f" ({', '.join(limits)})" if limits else "")
        print(f"  - {subscription.name}: {subscription.url} [{mode_desc}]")
    return 0


def show_pending(args, config: Config, subscriptions: List[SubscriptionConfig]) -> int:
    """List the episodes the next sync would download, without downloading."""
    orchestrator = SyncOrchestrator(config, subscriptions)
    queues = asyncio.run(orchestrator.pending())

    for name, episodes in queues.items():
        print(f"\n{name}: {len(episodes)} pending")
        for episode in episodes:
            print(f"  [{episode.index}] {episode.published:%Y-%m-%d} {episode.title}")
    return 0


def create_parser():
    """Create the argument parser for the CLI."""
    parser = get_base_parser()
    add_log_level_argument(parser)
    add_subscriptions_argument(parser)

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    subparsers.add_parser("sync", help="Download new episodes (default)")
    subparsers.add_parser("check", help="Validate configuration and list subscriptions")
    subparsers.add_parser("pending", help="Show episodes the next sync would download")

    return parser


def main(argv=None):
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stderr),
        ],
    )
    # aiohttp is chatty on INFO
    if args.log_level.upper() == "INFO":
        logging.getLogger("aiohttp").setLevel("WARNING")

    commands = {
        "sync": sync_podcasts,
        "check": check_config,
        "pending": show_pending,
    }
    command_func = commands[args.command or "sync"]

    try:
        config = Config(env_file=args.env_file)
        subscriptions = load_subscriptions(config, args.subscriptions)
        status = command_func(args, config, subscriptions)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Sync interrupted by user")
        sys.exit(130)

    sys.exit(status)


if __name__ == "__main__":
    main()
