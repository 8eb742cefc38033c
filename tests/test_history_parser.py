"""Tests for the history parser and token estimator."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from src.token_tracker.estimator import TokenEstimator
from src.token_tracker.history_parser import (
    HistoryParser,
    LogNotFoundError,
    WindowTotals,
    decode_entry,
)


# -- TokenEstimator ------------------------------------------------------------


class TestTokenEstimator:
    def test_none_is_zero(self):
        assert TokenEstimator().estimate(None) == 0

    def test_empty_string(self):
        assert TokenEstimator().estimate("") == 0

    def test_floor_division(self):
        est = TokenEstimator(7)
        assert est.estimate("x" * 400) == 57
        assert est.estimate("x" * 280) == 40
        assert est.estimate("x" * 6) == 0

    @pytest.mark.parametrize("ratio", [None, 0, -3])
    def test_default_ratio(self, ratio):
        assert TokenEstimator(ratio).ratio == 7

    def test_custom_ratio(self):
        assert TokenEstimator(4).estimate("abcdefgh") == 2


# -- decode_entry --------------------------------------------------------------


class TestDecodeEntry:
    def test_valid_line(self):
        decoded = decode_entry('{"timestamp": 1771428600000, "input_text": "hi"}')
        assert decoded is not None
        entry, when = decoded
        assert entry.input_text == "hi"
        assert entry.output_text is None
        assert when.year == 2026

    def test_integer_and_float_timestamps(self):
        assert decode_entry('{"timestamp": 1771428600000}') is not None
        assert decode_entry('{"timestamp": 1771428600000.5}') is not None

    def test_extra_fields_ignored(self):
        assert decode_entry('{"timestamp": 1, "project": "/tmp", "display": "x"}') is not None

    @pytest.mark.parametrize("line", [
        "not json at all",
        '{"timestamp": ',
        '{"model": "sonnet"}',
        '{"timestamp": "1771428600000"}',
        '{"timestamp": 1, "input_text": 42}',
        "[1, 2, 3]",
        '"just a string"',
        '{"timestamp": 1e300}',
    ])
    def test_malformed_lines(self, line):
        assert decode_entry(line) is None


# -- HistoryParser -------------------------------------------------------------


class TestHistoryParser:
    def test_missing_file(self, tmp_path: Path, now):
        parser = HistoryParser(tmp_path / "nope.jsonl")
        with pytest.raises(LogNotFoundError) as exc_info:
            parser.parse(now)
        assert isinstance(exc_info.value, FileNotFoundError)
        assert "History file not found" in str(exc_info.value)

    def test_empty_file(self, write_history, now):
        path = write_history([])
        assert HistoryParser(path).parse(now) == WindowTotals()

    def test_single_recent_entry_counts_everywhere(self, write_history, now, make_entry):
        path = write_history([
            make_entry(now - timedelta(minutes=10), "a" * 400, "b" * 280),
        ])
        totals = HistoryParser(path, TokenEstimator(7)).parse(now)
        assert totals.session_tokens == 97
        assert totals.daily_tokens == 97
        assert totals.weekly_tokens == 97
        assert totals.monthly_tokens == 97
        assert totals.turn_count == 1

    def test_window_membership(self, write_history, now, make_entry):
        path = write_history([
            make_entry(now - timedelta(days=40), "x" * 70),   # outside all windows
            make_entry(now - timedelta(days=10), "x" * 140),  # monthly only
            make_entry(now - timedelta(days=2), "x" * 210),   # weekly + monthly
            make_entry(now - timedelta(hours=3), "x" * 280),  # daily + weekly + monthly
        ])
        totals = HistoryParser(path, TokenEstimator(7)).parse(now)
        assert totals.session_tokens == 0
        assert totals.daily_tokens == 40
        assert totals.weekly_tokens == 30 + 40
        assert totals.monthly_tokens == 20 + 30 + 40
        assert totals.turn_count == 2

    def test_window_cutoffs_are_exclusive(self, write_history, now, make_entry):
        path = write_history([
            make_entry(now - timedelta(hours=24), "x" * 70),
            make_entry(now - timedelta(days=7), "x" * 70),
        ])
        totals = HistoryParser(path, TokenEstimator(7)).parse(now)
        assert totals.daily_tokens == 0
        assert totals.weekly_tokens == 10  # the 24h-old entry only
        assert totals.turn_count == 1

    def test_gap_over_30_minutes_starts_new_session(self, write_history, now, make_entry):
        # 31-minute gap: the second entry opens a session, the third joins it.
        path = write_history([
            make_entry(now - timedelta(minutes=50), "x" * 70),
            make_entry(now - timedelta(minutes=19), "x" * 140),
            make_entry(now - timedelta(minutes=5), "x" * 210),
        ])
        totals = HistoryParser(path, TokenEstimator(7)).parse(now)
        assert totals.session_tokens == 20 + 30

    def test_gap_under_30_minutes_keeps_session(self, write_history, now, make_entry):
        # 29-minute gap: no new session, so the third entry (43 minutes after
        # the session start) is the one that resets the accumulator.
        path = write_history([
            make_entry(now - timedelta(minutes=48), "x" * 70),
            make_entry(now - timedelta(minutes=19), "x" * 140),
            make_entry(now - timedelta(minutes=5), "x" * 210),
        ])
        totals = HistoryParser(path, TokenEstimator(7)).parse(now)
        assert totals.session_tokens == 30

    def test_session_only_counts_trailing_30_minutes(self, write_history, now, make_entry):
        path = write_history([
            make_entry(now - timedelta(minutes=45), "x" * 700),
            make_entry(now - timedelta(minutes=25), "x" * 70),
        ])
        totals = HistoryParser(path, TokenEstimator(7)).parse(now)
        # Same session (20 min gap) but the older entry is outside the trailing window.
        assert totals.session_tokens == 10
        assert totals.daily_tokens == 110

    def test_malformed_line_is_ignored(self, write_history, now, make_entry, history_path):
        valid = [
            make_entry(now - timedelta(minutes=20), "x" * 350, "y" * 70),
            make_entry(now - timedelta(hours=5), "x" * 700),
            make_entry(now - timedelta(days=3), None, "z" * 1400),
        ]
        write_history(valid)
        clean = HistoryParser(history_path).parse(now)

        write_history([valid[0], "{broken json", valid[1], '{"no_timestamp": true}', valid[2]])
        noisy = HistoryParser(history_path).parse(now)

        assert noisy.skipped_lines == 2
        assert clean.skipped_lines == 0
        for field in ("session_tokens", "daily_tokens", "weekly_tokens", "monthly_tokens", "turn_count"):
            assert getattr(noisy, field) == getattr(clean, field)

    def test_blank_lines_are_not_counted_as_skipped(self, write_history, now, make_entry):
        path = write_history([make_entry(now - timedelta(minutes=1), "x" * 7), "", "   "])
        totals = HistoryParser(path).parse(now)
        assert totals.skipped_lines == 0
        assert totals.turn_count == 1

    def test_idempotent(self, write_history, now, make_entry):
        path = write_history([
            make_entry(now - timedelta(minutes=m), "x" * (m * 13)) for m in range(5, 5000, 97)
        ])
        parser = HistoryParser(path)
        assert parser.parse(now) == parser.parse(now)

    def test_entries_without_text(self, write_history, now, make_entry):
        path = write_history([make_entry(now - timedelta(minutes=2))])
        totals = HistoryParser(path).parse(now)
        assert totals.turn_count == 1
        assert totals.weekly_tokens == 0
