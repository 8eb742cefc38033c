"""Limits store: SQLite-backed key/value settings + last snapshot blob.

Keys are plain strings.  Values are stored JSON-encoded so ints, floats and
booleans round-trip.  A missing key is returned as ``None``; it is never
conflated with a stored zero.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from src.config import settings
from src.token_tracker.models import UsageSnapshot, Window

logger = logging.getLogger(__name__)

# Store keys
TOKEN_ESTIMATION_RATIO = "tokenEstimationRatio"
SESSION_TOKEN_LIMIT = "sessionTokenLimit"
DAILY_TOKEN_LIMIT = "dailyTokenLimit"
WEEKLY_TOKEN_LIMIT = "weeklyTokenLimit"
MONTHLY_TOKEN_LIMIT = "monthlyTokenLimit"
SESSION_REQUEST_LIMIT = "sessionRequestLimit"
REFRESH_INTERVAL = "refreshInterval"
SHOW_NOTIFICATIONS = "showNotifications"
NOTIFICATION_THRESHOLD = "notificationThreshold"
LAST_USAGE_DATA = "lastUsageData"

TOKEN_LIMIT_KEYS = {
    Window.SESSION: SESSION_TOKEN_LIMIT,
    Window.DAILY: DAILY_TOKEN_LIMIT,
    Window.WEEKLY: WEEKLY_TOKEN_LIMIT,
    Window.MONTHLY: MONTHLY_TOKEN_LIMIT,
}

DEFAULT_TOKEN_LIMITS = {
    Window.SESSION: 200_000,
    Window.DAILY: 500_000,
    Window.WEEKLY: 2_000_000,
    Window.MONTHLY: 10_000_000,
}
DEFAULT_SESSION_REQUEST_LIMIT = 50


@dataclass(frozen=True)
class ResolvedLimits:
    """Effective limits after falling back to defaults."""

    session_tokens: int = DEFAULT_TOKEN_LIMITS[Window.SESSION]
    daily_tokens: int = DEFAULT_TOKEN_LIMITS[Window.DAILY]
    weekly_tokens: int = DEFAULT_TOKEN_LIMITS[Window.WEEKLY]
    monthly_tokens: int = DEFAULT_TOKEN_LIMITS[Window.MONTHLY]
    session_requests: int = DEFAULT_SESSION_REQUEST_LIMIT

    def tokens(self, window: Window) -> int:
        return getattr(self, f"{window.value}_tokens")


class LimitsStore:
    """Persisted key/value map for limits, settings and the last snapshot."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        self._db_path = Path(db_path or settings.limits_db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def _init_db(self) -> None:
        conn = self._get_conn()
        conn.execute(
            "CREATE TABLE IF NOT EXISTS kv_store ("
            "  key TEXT PRIMARY KEY,"
            "  value TEXT NOT NULL"
            ")"
        )
        conn.commit()

    # -- raw access ------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        with self._lock:
            row = self._get_conn().execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,),
            ).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable value for %s", key)
            return None

    def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                "INSERT INTO kv_store (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, encoded),
            )
            conn.commit()

    def delete(self, key: str) -> bool:
        with self._lock:
            conn = self._get_conn()
            cur = conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
        return cur.rowcount > 0

    # -- typed accessors -------------------------------------------------------

    def get_int(self, key: str) -> int | None:
        value = self.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return int(value)

    def get_float(self, key: str) -> float | None:
        value = self.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    def get_bool(self, key: str) -> bool | None:
        value = self.get(key)
        return value if isinstance(value, bool) else None

    def _positive_int(self, key: str, default: int) -> int:
        value = self.get_int(key)
        if value is None:
            return default
        if value <= 0:
            logger.debug("Ignoring non-positive %s=%d, using %d", key, value, default)
            return default
        return value

    # -- limits ------------------------------------------------------------------

    def resolve_limits(self) -> ResolvedLimits:
        return ResolvedLimits(
            session_tokens=self._positive_int(SESSION_TOKEN_LIMIT, DEFAULT_TOKEN_LIMITS[Window.SESSION]),
            daily_tokens=self._positive_int(DAILY_TOKEN_LIMIT, DEFAULT_TOKEN_LIMITS[Window.DAILY]),
            weekly_tokens=self._positive_int(WEEKLY_TOKEN_LIMIT, DEFAULT_TOKEN_LIMITS[Window.WEEKLY]),
            monthly_tokens=self._positive_int(MONTHLY_TOKEN_LIMIT, DEFAULT_TOKEN_LIMITS[Window.MONTHLY]),
            session_requests=self._positive_int(SESSION_REQUEST_LIMIT, DEFAULT_SESSION_REQUEST_LIMIT),
        )

    def set_token_limit(self, window: Window | str, value: int) -> None:
        if value <= 0:
            raise ValueError(f"Token limit must be positive, got {value}")
        self.set(TOKEN_LIMIT_KEYS[Window(window)], int(value))

    def set_request_limit(self, value: int) -> None:
        if value <= 0:
            raise ValueError(f"Request limit must be positive, got {value}")
        self.set(SESSION_REQUEST_LIMIT, int(value))

    def reset_limits(self) -> None:
        """Forget user-configured limits so defaults apply again."""
        for key in (*TOKEN_LIMIT_KEYS.values(), SESSION_REQUEST_LIMIT):
            self.delete(key)

    # -- settings ----------------------------------------------------------------

    def token_estimation_ratio(self) -> int:
        return self._positive_int(TOKEN_ESTIMATION_RATIO, settings.token_estimation_ratio)

    def refresh_interval(self) -> int:
        value = self._positive_int(REFRESH_INTERVAL, settings.refresh_interval)
        return clamp_interval(value)

    def show_notifications(self) -> bool:
        value = self.get_bool(SHOW_NOTIFICATIONS)
        return settings.show_notifications if value is None else value

    def notification_threshold(self) -> float:
        value = self.get_float(NOTIFICATION_THRESHOLD)
        if value is None or value <= 0:
            return settings.notification_threshold
        return value

    # -- snapshot persistence ----------------------------------------------------

    def save_snapshot(self, snapshot: UsageSnapshot) -> bool:
        """Persist the snapshot.  Failures are logged, never raised."""
        try:
            self.set(LAST_USAGE_DATA, snapshot.model_dump(mode="json"))
        except (sqlite3.Error, TypeError, ValueError) as exc:
            logger.warning("Failed to persist usage snapshot: %s", exc)
            return False
        return True

    def load_snapshot(self) -> UsageSnapshot | None:
        """Return the persisted snapshot, or ``None`` if absent or corrupt."""
        try:
            data = self.get(LAST_USAGE_DATA)
        except sqlite3.Error as exc:
            logger.warning("Failed to read persisted snapshot: %s", exc)
            return None
        if data is None:
            return None
        try:
            return UsageSnapshot.model_validate(data)
        except ValidationError:
            logger.warning("Persisted snapshot is corrupt, ignoring it")
            return None

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None


def clamp_interval(seconds: int) -> int:
    return max(settings.min_refresh_interval, min(settings.max_refresh_interval, seconds))
