"""Tests for CLI sync commands."""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from podsync.cli.sync_commands import create_parser, main
from podsync.workflow.orchestrator import SubscriptionResult

SUBSCRIPTIONS_YAML = """
podcasts:
  show:
    url: https://example.com/feed.xml
    max_episodes: 3
"""


@pytest.fixture
def subscriptions_file(tmp_path):
    """Provide a valid subscription file."""
    path = tmp_path / "podcasts.yaml"
    path.write_text(SUBSCRIPTIONS_YAML)
    return path


class TestCreateParser:
    """Tests for create_parser."""

    def test_commands(self):
        """Test that the subcommands parse."""
        parser = create_parser()

        assert parser.parse_args(["sync"]).command == "sync"
        assert parser.parse_args(["-c", "x.yaml", "pending"]).subscriptions == "x.yaml"
        assert parser.parse_args([]).command is None


class TestMain:
    """Tests for the main entry point."""

    def test_check(self, subscriptions_file, capsys):
        """Test that check lists subscriptions and exits 0."""
        with pytest.raises(SystemExit) as exc:
            main(["-c", str(subscriptions_file), "check"])

        assert exc.value.code == 0
        out = capsys.readouterr().out
        assert "show: https://example.com/feed.xml [standard (max 3 episodes)]" in out

    def test_config_error_exits_1(self, tmp_path):
        """Test that configuration errors exit with status 1."""
        path = tmp_path / "podcasts.yaml"
        path.write_text("podcasts:\n  show:\n    url: https://a\n    name_pattern: '{bogus}'\n")

        with pytest.raises(SystemExit) as exc:
            main(["-c", str(path), "sync"])

        assert exc.value.code == 1

    def test_sync_is_default(self, subscriptions_file, capsys):
        """Test that running without a command syncs and prints paths."""
        with patch("podsync.cli.sync_commands.SyncOrchestrator") as mock_cls:
            orchestrator = mock_cls.return_value
            orchestrator.sync = AsyncMock(return_value=[Path("/tmp/show/ep.mp3")])
            orchestrator.results = [SubscriptionResult(name="show", paths=[Path("/tmp/show/ep.mp3")])]

            with pytest.raises(SystemExit) as exc:
                main(["-c", str(subscriptions_file)])

        assert exc.value.code == 0
        assert "/tmp/show/ep.mp3" in capsys.readouterr().out
        subscriptions = mock_cls.call_args[0][1]
        assert [s.name for s in subscriptions] == ["show"]

    def test_sync_reports_failures(self, subscriptions_file, capsys):
        """Test that failed subscriptions give exit status 2."""
        with patch("podsync.cli.sync_commands.SyncOrchestrator") as mock_cls:
            orchestrator = mock_cls.return_value
            orchestrator.sync = AsyncMock(return_value=[])
            orchestrator.results = [SubscriptionResult(name="show", error="HTTP 404")]

            with pytest.raises(SystemExit) as exc:
                main(["-c", str(subscriptions_file), "sync"])

        assert exc.value.code == 2
        assert "show: HTTP 404" in capsys.readouterr().err

    def test_pending(self, subscriptions_file, capsys):
        """Test that pending prints each queue."""
        with patch("podsync.cli.sync_commands.SyncOrchestrator") as mock_cls:
            mock_cls.return_value.pending = AsyncMock(return_value={"show": []})

            with pytest.raises(SystemExit) as exc:
                main(["-c", str(subscriptions_file), "pending"])

        assert exc.value.code == 0
        assert "show: 0 pending" in capsys.readouterr().out
