"""Tests for the completion ledger."""

from podsync.podcast.ledger import LEDGER_FILENAME, CompletionLedger, LedgerEntry


class TestLedgerEntry:
    """Tests for ledger line encoding."""

    def test_to_line(self):
        """Test the line format."""
        entry = LedgerEntry(id="guid-1", completed_at=1700000000, title="Hello")

        assert entry.to_line() == 'guid-1 1700000000 "Hello"\n'

    def test_from_line_with_spaces_and_quotes(self):
        """Test that ids with spaces and titles with quotes parse."""
        entry = LedgerEntry.from_line('my id 42 "Say "hi" again"\n')

        assert entry == LedgerEntry(id="my id", completed_at=42, title='Say "hi" again')

    def test_from_line_malformed(self):
        """Test that malformed lines give None."""
        assert LedgerEntry.from_line("no timestamp here\n") is None
        assert LedgerEntry.from_line("\n") is None

    def test_newlines_are_flattened(self):
        """Test that multi-line ids and titles stay on one line."""
        entry = LedgerEntry(id="a\nb", completed_at=1, title="line one\nline two")

        assert entry.to_line() == 'a b 1 "line one line two"\n'


class TestCompletionLedger:
    """Tests for CompletionLedger persistence."""

    def test_missing_file_is_empty(self, tmp_path):
        """Test loading from a directory without a ledger."""
        ledger = CompletionLedger.load(tmp_path / "nope")

        assert len(ledger) == 0
        assert "anything" not in ledger
        assert not (tmp_path / "nope").exists()

    def test_append_and_reload(self, tmp_path):
        """Test that appended ids are visible after reloading."""
        ledger = CompletionLedger.load(tmp_path)
        ledger.append("guid-1", "First", completed_at=100)
        ledger.append("guid-2", "Second", completed_at=200)

        reloaded = CompletionLedger.load(tmp_path)

        assert "guid-1" in reloaded
        assert "guid-2" in reloaded
        assert [e.title for e in reloaded.entries] == ["First", "Second"]
        assert (tmp_path / LEDGER_FILENAME).read_text() == (
            'guid-1 100 "First"\nguid-2 200 "Second"\n'
        )

    def test_append_creates_directory(self, tmp_path):
        """Test that append creates the download directory."""
        directory = tmp_path / "a" / "b"
        CompletionLedger(directory).append("x", "X")

        assert (directory / LEDGER_FILENAME).exists()

    def test_duplicate_ids_are_idempotent(self, tmp_path):
        """Test that appending an id twice keeps one membership."""
        ledger = CompletionLedger.load(tmp_path)
        ledger.append("guid-1", "First", completed_at=100)
        ledger.append("guid-1", "First again", completed_at=200)

        reloaded = CompletionLedger.load(tmp_path)

        assert len(reloaded) == 1
        assert reloaded.entries[0].title == "First"
        assert len((tmp_path / LEDGER_FILENAME).read_text().splitlines()) == 2

    def test_partial_trailing_line_ignored(self, tmp_path):
        """Test that an interrupted write does not count as completed."""
        (tmp_path / LEDGER_FILENAME).write_text('guid-1 100 "First"\nguid-2 20')

        ledger = CompletionLedger.load(tmp_path)

        assert "guid-1" in ledger
        assert "guid-2" not in ledger

    def test_append_after_partial_line(self, tmp_path):
        """Test that a new entry starts on its own line."""
        (tmp_path / LEDGER_FILENAME).write_text('guid-1 100 "First"\ngarbage')

        CompletionLedger.load(tmp_path).append("guid-3", "Third", completed_at=300)
        reloaded = CompletionLedger.load(tmp_path)

        assert "guid-3" in reloaded
        assert "guid-1" in reloaded
        assert (tmp_path / LEDGER_FILENAME).read_text().endswith('\nguid-3 300 "Third"\n')

    def test_malformed_lines_skipped(self, tmp_path):
        """Test that junk lines are ignored."""
        (tmp_path / LEDGER_FILENAME).write_text('junk\n\nguid-1 100 "First"\n')

        ledger = CompletionLedger.load(tmp_path)

        assert list(ledger) == ["guid-1"]

    def test_contains_flattens_ids(self, tmp_path):
        """Test that ids with newlines match their stored form."""
        ledger = CompletionLedger(tmp_path)
        ledger.append("a\nb", "T")

        assert "a\nb" in ledger
        assert "a b" in ledger
        assert 123 not in ledger
