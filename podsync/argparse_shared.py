import argparse

def get_base_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync podcast subscriptions")
    parser.add_argument("-e", "--env-file", help="Path to a custom .env file", default=None)
    return parser

def add_log_level_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-l", "--log-level", help="Set log level (DEBUG, INFO, WARNING, ERROR)", default="INFO")

def add_subscriptions_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--subscriptions", help="Path to the subscription file (YAML)", default=None)
