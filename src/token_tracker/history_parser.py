"""Parse the Claude Code interaction log to estimate token consumption.

The log (``~/.claude/history.jsonl``) holds one JSON record per line with a
millisecond epoch ``timestamp`` and optional ``input_text`` / ``output_text``
payloads.  Token counts are estimated from text length, so the numbers are
approximate by nature.

Malformed lines never abort a scan: they are skipped and counted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

from src.token_tracker.estimator import TokenEstimator

logger = logging.getLogger(__name__)

SESSION_GAP = timedelta(minutes=30)
SESSION_WINDOW = timedelta(minutes=30)
DAILY_WINDOW = timedelta(hours=24)
WEEKLY_WINDOW = timedelta(days=7)
MONTHLY_WINDOW = timedelta(days=30)


class LogNotFoundError(FileNotFoundError):
    """The history log does not exist."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"History file not found: {path}")


class HistoryEntry(BaseModel):
    """One record of the interaction log."""

    model_config = ConfigDict(strict=True, frozen=True)

    timestamp: float  # milliseconds since epoch
    model: str | None = None
    input_text: str | None = None
    output_text: str | None = None

    @property
    def time(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)


@dataclass
class WindowTotals:
    """Raw token sums per window, as produced by a single scan."""

    session_tokens: int = 0
    daily_tokens: int = 0
    weekly_tokens: int = 0
    monthly_tokens: int = 0
    turn_count: int = 0
    skipped_lines: int = 0


def decode_entry(line: str) -> tuple[HistoryEntry, datetime] | None:
    """Decode one log line, returning ``None`` when it is unusable."""
    try:
        entry = HistoryEntry.model_validate_json(line)
        return entry, entry.time
    except ValidationError:
        return None
    except (OverflowError, OSError, ValueError):
        # timestamp out of the platform's datetime range
        return None


class HistoryParser:
    """Scans the history log and sums estimated tokens per window."""

    def __init__(self, path: Path, estimator: TokenEstimator | None = None) -> None:
        self.path = Path(path)
        self.estimator = estimator or TokenEstimator()

    def _read_lines(self) -> list[str]:
        try:
            with open(self.path, "r", encoding="utf-8", errors="replace") as f:
                content = f.read()
        except FileNotFoundError as exc:
            raise LogNotFoundError(self.path) from exc
        return [line for line in content.splitlines() if line.strip()]

    def parse(self, now: datetime | None = None) -> WindowTotals:
        """Aggregate the log into window sums.

        Args:
            now: Reference time for all window cutoffs.  Captured once so a
                long scan does not drift.  Defaults to the current time.

        Raises:
            LogNotFoundError: the log file does not exist.
        """
        now = now or datetime.now(timezone.utc)
        lines = self._read_lines()

        session_cutoff = now - SESSION_WINDOW
        daily_cutoff = now - DAILY_WINDOW
        weekly_cutoff = now - WEEKLY_WINDOW
        monthly_cutoff = now - MONTHLY_WINDOW

        totals = WindowTotals()
        last_session_start: datetime | None = None

        for line in lines:
            decoded = decode_entry(line)
            if decoded is None:
                totals.skipped_lines += 1
                continue
            entry, entry_time = decoded

            tokens = self.estimator.estimate(entry.input_text) + self.estimator.estimate(
                entry.output_text
            )

            if entry_time > daily_cutoff:
                totals.daily_tokens += tokens
            if entry_time > weekly_cutoff:
                totals.weekly_tokens += tokens
                totals.turn_count += 1
            if entry_time > monthly_cutoff:
                totals.monthly_tokens += tokens

            # A gap longer than SESSION_GAP since the session start opens a new session.
            if last_session_start is None or entry_time - last_session_start > SESSION_GAP:
                last_session_start = entry_time
                totals.session_tokens = 0

            # Only the trailing 30 minutes count toward the session sum.
            if entry_time > session_cutoff:
                totals.session_tokens += tokens

        if totals.skipped_lines:
            logger.debug(
                "Skipped %d malformed line(s) in %s", totals.skipped_lines, self.path,
            )
        return totals
