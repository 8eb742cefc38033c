"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from src.token_tracker.limits import LimitsStore


def make_entry(
    when: datetime,
    input_text: str | None = None,
    output_text: str | None = None,
    model: str | None = "claude-sonnet-4-6",
) -> dict[str, Any]:
    """Build one history record as Claude Code writes it."""
    entry: dict[str, Any] = {"timestamp": when.timestamp() * 1000}
    if model is not None:
        entry["model"] = model
    if input_text is not None:
        entry["input_text"] = input_text
    if output_text is not None:
        entry["output_text"] = output_text
    return entry


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 2, 18, 15, 30, tzinfo=timezone.utc)


@pytest.fixture
def history_path(tmp_path: Path) -> Path:
    return tmp_path / ".claude" / "history.jsonl"


@pytest.fixture
def write_history(history_path: Path) -> Callable[[list[Any]], Path]:
    """Write entries (dicts are JSON-encoded, strings written verbatim)."""

    def _write(lines: list[Any]) -> Path:
        history_path.parent.mkdir(parents=True, exist_ok=True)
        with open(history_path, "w", encoding="utf-8") as f:
            for line in lines:
                f.write((line if isinstance(line, str) else json.dumps(line)) + "\n")
        return history_path

    return _write


@pytest.fixture
def store(tmp_path: Path):
    s = LimitsStore(db_path=tmp_path / "data" / "usage.db")
    yield s
    s.close()


@pytest.fixture(name="make_entry")
def make_entry_fixture() -> Callable[..., dict[str, Any]]:
    return make_entry
