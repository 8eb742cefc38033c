"""Window aggregation and calendar-aware reset times.

Daily windows reset at local midnight, weekly windows on Monday 00:00 local
time and monthly windows on the first of the next month.  All reset times
are computed fresh from ``now`` on every refresh.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

from src.token_tracker.history_parser import WindowTotals
from src.token_tracker.limits import ResolvedLimits
from src.token_tracker.models import UsageSnapshot, Window, WindowUsage


def _local_midnight(day: date) -> datetime:
    # A naive datetime's astimezone() interprets it as local time, DST included.
    return datetime.combine(day, time.min).astimezone()


def next_daily_reset(now: datetime) -> datetime:
    """Next local midnight strictly after ``now``."""
    today = now.astimezone().date()
    return _local_midnight(today + timedelta(days=1))


def next_weekly_reset(now: datetime) -> datetime:
    """Next Monday 00:00 local time strictly after ``now``."""
    today = now.astimezone().date()
    candidate = _local_midnight(today + timedelta(days=(7 - today.weekday()) % 7))
    if candidate <= now:
        candidate = _local_midnight(today + timedelta(days=7 - today.weekday()))
    return candidate


def next_monthly_reset(now: datetime) -> datetime:
    """First day of the next calendar month, 00:00 local time."""
    today = now.astimezone().date()
    if today.month == 12:
        first = date(today.year + 1, 1, 1)
    else:
        first = date(today.year, today.month + 1, 1)
    return _local_midnight(first)


def aggregate(
    totals: WindowTotals,
    limits: ResolvedLimits,
    now: datetime | None = None,
) -> UsageSnapshot:
    """Build a snapshot from raw window sums and resolved limits."""
    now = now or datetime.now(timezone.utc)
    return UsageSnapshot(
        session=WindowUsage(
            window=Window.SESSION,
            tokens_used=totals.session_tokens,
            tokens_limit=limits.session_tokens,
            requests_used=min(totals.turn_count, limits.session_requests),
            requests_limit=limits.session_requests,
        ),
        daily=WindowUsage(
            window=Window.DAILY,
            tokens_used=totals.daily_tokens,
            tokens_limit=limits.daily_tokens,
            resets_at=next_daily_reset(now),
        ),
        weekly=WindowUsage(
            window=Window.WEEKLY,
            tokens_used=totals.weekly_tokens,
            tokens_limit=limits.weekly_tokens,
            resets_at=next_weekly_reset(now),
        ),
        monthly=WindowUsage(
            window=Window.MONTHLY,
            tokens_used=totals.monthly_tokens,
            tokens_limit=limits.monthly_tokens,
            resets_at=next_monthly_reset(now),
        ),
        last_updated=now,
    )


def placeholder_snapshot(now: datetime | None = None) -> UsageSnapshot:
    """Illustrative non-zero snapshot shown until real data exists."""
    now = now or datetime.now(timezone.utc)
    return UsageSnapshot(
        session=WindowUsage(
            window=Window.SESSION,
            tokens_used=8_000,
            tokens_limit=10_000,
            requests_used=45,
            requests_limit=50,
        ),
        daily=WindowUsage(
            window=Window.DAILY,
            tokens_used=150_000,
            tokens_limit=200_000,
            resets_at=next_daily_reset(now),
        ),
        weekly=WindowUsage(
            window=Window.WEEKLY,
            tokens_used=600_000,
            tokens_limit=1_000_000,
            resets_at=now + timedelta(days=3),
        ),
        monthly=WindowUsage(
            window=Window.MONTHLY,
            tokens_used=2_500_000,
            tokens_limit=5_000_000,
            resets_at=next_monthly_reset(now),
        ),
        last_updated=now,
    )
