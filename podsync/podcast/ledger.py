"""Per-subscription record of completed downloads.

The ledger is a line-oriented, append-only file named ``.downloaded`` inside
the subscription's download directory::

    <id> <unix-timestamp> "<title>"

Only the presence of an id matters. Duplicate lines are harmless, and a
partial trailing line left by an interrupted write is ignored on load.
"""

import logging
import os
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

logger = logging.getLogger(__name__)

LEDGER_FILENAME = ".downloaded"

_LINE_RE = re.compile(r'^(?P<id>.+) (?P<ts>\d+) "(?P<title>.*)"$')


@dataclass(frozen=True)
class LedgerEntry:
    """One completed episode."""

    id: str
    completed_at: int
    title: str

    def to_line(self) -> str:
        return f'{_flatten(self.id)} {self.completed_at} "{_flatten(self.title)}"\n'

    @classmethod
    def from_line(cls, line: str) -> Optional["LedgerEntry"]:
        """Parse a ledger line, returning None if it is malformed."""
        match = _LINE_RE.match(line.rstrip("\r\n"))
        if not match:
            return None
        return cls(
            id=match.group("id"),
            completed_at=int(match.group("ts")),
            title=match.group("title"),
        )


def _flatten(text: str) -> str:
    return " ".join(text.splitlines())


class CompletionLedger:
    """Set of downloaded episode ids backed by an append-only file.

    Example:
        ledger = CompletionLedger.load(Path("~/podcasts/show").expanduser())
        if episode_id not in ledger:
            ...
            ledger.append(episode_id, episode.title)
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self._entries: Dict[str, LedgerEntry] = {}

    @property
    def path(self) -> Path:
        return self.directory / LEDGER_FILENAME

    @classmethod
    def load(cls, directory: Union[str, Path]) -> "CompletionLedger":
        """Read the ledger in `directory`; a missing file yields an empty ledger."""
        ledger = cls(directory)
        if not ledger.path.exists():
            return ledger

        with open(ledger.path, "r", encoding="utf-8", errors="replace") as f:
            for number, line in enumerate(f, start=1):
                if not line.endswith("\n"):
                    logger.debug(f"Ignoring partial trailing line {number} in {ledger.path}")
                    continue
                entry = LedgerEntry.from_line(line)
                if entry is None:
                    if line.strip():
                        logger.debug(f"Ignoring malformed line {number} in {ledger.path}")
                    continue
                ledger._entries.setdefault(entry.id, entry)

        logger.debug(f"Loaded {len(ledger)} ledger entries from {ledger.path}")
        return ledger

    def __contains__(self, episode_id: object) -> bool:
        if not isinstance(episode_id, str):
            return False
        return _flatten(episode_id) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    @property
    def entries(self) -> List[LedgerEntry]:
        return list(self._entries.values())

    def append(
        self,
        episode_id: str,
        title: str,
        completed_at: Optional[int] = None,
    ) -> LedgerEntry:
        """Record a completed episode.

        Existing lines are never rewritten; an id that is already present is
        appended again.
        """
        entry = LedgerEntry(
            id=_flatten(episode_id),
            completed_at=int(time.time()) if completed_at is None else completed_at,
            title=title,
        )

        self.directory.mkdir(parents=True, exist_ok=True)
        prefix = "\n" if self._ends_with_partial_line() else ""
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(prefix + entry.to_line())
            f.flush()
            os.fsync(f.fileno())

        self._entries.setdefault(entry.id, entry)
        return entry

    def _ends_with_partial_line(self) -> bool:
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            return False
        if size == 0:
            return False
        with open(self.path, "rb") as f:
            f.seek(size - 1)
            return f.read(1) != b"\n"
