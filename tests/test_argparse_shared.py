"""Tests for argparse_shared module."""

import argparse

from podsync.argparse_shared import (
    add_log_level_argument,
    add_subscriptions_argument,
    get_base_parser,
)


class TestGetBaseParser:
    """Tests for get_base_parser function."""

    def test_returns_argument_parser(self):
        """Test that get_base_parser returns an ArgumentParser."""
        assert isinstance(get_base_parser(), argparse.ArgumentParser)

    def test_env_file(self):
        """Test the -e/--env-file argument."""
        parser = get_base_parser()

        assert parser.parse_args(["-e", "/path/.env"]).env_file == "/path/.env"
        assert parser.parse_args([]).env_file is None


class TestSharedArguments:
    """Tests for the add_* helpers."""

    def test_log_level(self):
        """Test the log level argument and its default."""
        parser = get_base_parser()
        add_log_level_argument(parser)

        assert parser.parse_args([]).log_level == "INFO"
        assert parser.parse_args(["-l", "DEBUG"]).log_level == "DEBUG"

    def test_subscriptions(self):
        """Test the subscription file argument."""
        parser = get_base_parser()
        add_subscriptions_argument(parser)

        assert parser.parse_args([]).subscriptions is None
        assert parser.parse_args(["--subscriptions", "p.yaml"]).subscriptions == "p.yaml"
