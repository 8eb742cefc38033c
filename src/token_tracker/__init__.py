from src.token_tracker.aggregator import (
    aggregate,
    next_daily_reset,
    next_monthly_reset,
    next_weekly_reset,
    placeholder_snapshot,
)
from src.token_tracker.estimator import TokenEstimator
from src.token_tracker.history_parser import (
    HistoryEntry,
    HistoryParser,
    LogNotFoundError,
    WindowTotals,
)
from src.token_tracker.limits import LimitsStore, ResolvedLimits
from src.token_tracker.models import UsageLevel, UsageSnapshot, Window, WindowUsage
from src.token_tracker.monitor import UsageMonitor

__all__ = [
    "UsageMonitor",
    "LimitsStore",
    "ResolvedLimits",
    "TokenEstimator",
    "HistoryEntry",
    "HistoryParser",
    "LogNotFoundError",
    "WindowTotals",
    "UsageLevel",
    "UsageSnapshot",
    "Window",
    "WindowUsage",
    "aggregate",
    "next_daily_reset",
    "next_monthly_reset",
    "next_weekly_reset",
    "placeholder_snapshot",
]
