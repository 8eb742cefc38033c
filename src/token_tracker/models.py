"""Usage snapshot value types.

A ``UsageSnapshot`` is immutable: every refresh or manual override builds a
new one.  Derived values (percent used, level, formatted text) are computed
properties and are never persisted.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

WARNING_PERCENT = 50.0
CRITICAL_PERCENT = 80.0


class Window(str, Enum):
    SESSION = "session"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class UsageLevel(str, Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}" if n == 1 else f"{n} {unit}s"


class WindowUsage(BaseModel):
    """Token consumption for one window."""

    model_config = ConfigDict(frozen=True)

    window: Window
    tokens_used: int = Field(ge=0)
    tokens_limit: int
    resets_at: datetime | None = None
    # Session only
    requests_used: int | None = None
    requests_limit: int | None = None

    @property
    def percent_used(self) -> float:
        if self.tokens_limit <= 0:
            return 0.0
        return self.tokens_used / self.tokens_limit * 100

    @property
    def remaining(self) -> int:
        return max(0, self.tokens_limit - self.tokens_used)

    @property
    def level(self) -> UsageLevel:
        pct = self.percent_used
        if pct >= CRITICAL_PERCENT:
            return UsageLevel.CRITICAL
        if pct >= WARNING_PERCENT:
            return UsageLevel.WARNING
        return UsageLevel.OK

    @property
    def formatted_usage(self) -> str:
        if self.window is Window.SESSION:
            return f"{self.tokens_used:,} / {self.tokens_limit:,}"
        if self.window is Window.MONTHLY:
            return f"{self.tokens_used // 1_000_000}M / {self.tokens_limit // 1_000_000}M"
        return f"{self.tokens_used // 1_000}K / {self.tokens_limit // 1_000}K"

    def resets_in_text(self, now: datetime | None = None) -> str:
        """Human readable time until reset, e.g. ``"Resets in 3 days"``."""
        if self.resets_at is None:
            return ""
        now = now or datetime.now(timezone.utc)
        seconds = int((self.resets_at - now).total_seconds())
        days = seconds // 86400
        hours = (seconds % 86400) // 3600 if seconds > 0 else 0
        if days > 0:
            return f"Resets in {_plural(days, 'day')}"
        # monthly resets report whole days only
        if hours > 0 and self.window is not Window.MONTHLY:
            return f"Resets in {_plural(hours, 'hour')}"
        return "Resets soon"

    def with_tokens_used(self, tokens_used: int) -> WindowUsage:
        return self.model_copy(update={"tokens_used": tokens_used})

    def to_dict(self, now: datetime | None = None) -> dict[str, Any]:
        """Serializable view including derived fields."""
        d = self.model_dump(mode="json")
        d.update({
            "percent_used": round(self.percent_used, 1),
            "remaining": self.remaining,
            "level": self.level.value,
            "formatted_usage": self.formatted_usage,
            "resets_in_text": self.resets_in_text(now),
        })
        return d


class UsageSnapshot(BaseModel):
    """Usage of all four windows as of ``last_updated``."""

    model_config = ConfigDict(frozen=True)

    session: WindowUsage
    daily: WindowUsage
    weekly: WindowUsage
    monthly: WindowUsage
    last_updated: datetime

    def window(self, window: Window | str) -> WindowUsage:
        return getattr(self, Window(window).value)

    @property
    def windows(self) -> list[WindowUsage]:
        return [self.session, self.daily, self.weekly, self.monthly]

    @property
    def level(self) -> UsageLevel:
        """Overall indicator, driven by the weekly window."""
        return self.weekly.level

    def replace_windows(
        self, windows: dict[Window, WindowUsage], last_updated: datetime,
    ) -> UsageSnapshot:
        update: dict[str, Any] = {w.value: usage for w, usage in windows.items()}
        update["last_updated"] = last_updated
        return self.model_copy(update=update)

    def to_dict(self, now: datetime | None = None) -> dict[str, Any]:
        return {
            "session": self.session.to_dict(now),
            "daily": self.daily.to_dict(now),
            "weekly": self.weekly.to_dict(now),
            "monthly": self.monthly.to_dict(now),
            "level": self.level.value,
            "last_updated": self.last_updated.isoformat(),
        }
