"""Usage monitor. Owns the current snapshot and refreshes it on a timer.

Lifecycle:
    monitor = UsageMonitor(store)
    await monitor.start_monitoring()
    ...
    await monitor.stop_monitoring()

The snapshot, busy flag and error message are only mutated on the event
loop.  The log scan and aggregation run in a worker thread so a slow disk
never blocks the loop.  Refresh requests arriving while a refresh is in
flight are coalesced into one follow-up refresh.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine, Mapping
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from src.config import settings
from src.notifications import NotificationManager
from src.token_tracker.aggregator import aggregate, placeholder_snapshot
from src.token_tracker.estimator import TokenEstimator
from src.token_tracker.history_parser import HistoryParser, LogNotFoundError
from src.token_tracker.limits import (
    NOTIFICATION_THRESHOLD,
    REFRESH_INTERVAL,
    SHOW_NOTIFICATIONS,
    TOKEN_ESTIMATION_RATIO,
    LimitsStore,
    clamp_interval,
)
from src.token_tracker.models import UsageSnapshot, Window, WindowUsage

logger = logging.getLogger(__name__)

REQUESTS = "requests"  # pseudo-window name for the session request ceiling


class UsageMonitor:
    """Periodically re-computes usage from the history log."""

    def __init__(
        self,
        store: LimitsStore,
        history_path: Path | None = None,
        notifier: NotificationManager | None = None,
    ) -> None:
        self.store = store
        self.history_path = Path(history_path or settings.history_path)
        self.notifier = notifier
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="usage-refresh")
        self._task: asyncio.Task[None] | None = None
        self._inflight: asyncio.Task[None] | None = None
        self._running = False
        self._refresh_pending = False
        self._background: set[asyncio.Task[Any]] = set()

        self.is_busy = False
        self.last_error: str | None = None
        self.skipped_lines = 0

        restored = store.load_snapshot()
        if restored is not None:
            logger.info("Restored usage snapshot from %s", restored.last_updated.isoformat())
        self._snapshot = restored or placeholder_snapshot()
        threshold = store.notification_threshold()
        self._above_threshold = {
            w.window for w in self._snapshot.windows if w.percent_used >= threshold
        }

    # -- accessors -------------------------------------------------------------

    @property
    def current_snapshot(self) -> UsageSnapshot:
        return self._snapshot

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def refresh_interval(self) -> int:
        return self.store.refresh_interval()

    def status(self, now: datetime | None = None) -> dict[str, Any]:
        return {
            "usage": self._snapshot.to_dict(now),
            "is_busy": self.is_busy,
            "last_error": self.last_error,
            "is_running": self._running,
            "refresh_interval": self.refresh_interval,
            "skipped_lines": self.skipped_lines,
        }

    # -- scheduling ------------------------------------------------------------

    async def start_monitoring(self) -> None:
        """Refresh immediately, then keep refreshing at the configured interval."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._monitor_loop(), name="usage-monitor")
        logger.info(
            "Usage monitor started (interval=%ds, log=%s)", self.refresh_interval, self.history_path,
        )

    async def stop_monitoring(self) -> None:
        """Cancel the timer.  No further automatic refreshes fire after this returns."""
        self._running = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Usage monitor stopped")

    async def close(self) -> None:
        """Stop the timer and wait for any refresh already under way."""
        await self.stop_monitoring()
        if self._inflight is not None and not self._inflight.done():
            await self._inflight
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._executor.shutdown(wait=True)

    async def _monitor_loop(self, immediate: bool = True) -> None:
        if immediate:
            await self.refresh_now()
        while self._running:
            await asyncio.sleep(self.refresh_interval)
            if not self._running:
                break
            await self.refresh_now()

    # -- refresh ---------------------------------------------------------------

    def _compute(self, now: datetime) -> tuple[UsageSnapshot, int]:
        """Scan + aggregate.  Runs in the worker thread."""
        estimator = TokenEstimator(self.store.token_estimation_ratio())
        totals = HistoryParser(self.history_path, estimator).parse(now)
        snapshot = aggregate(totals, self.store.resolve_limits(), now)
        return snapshot, totals.skipped_lines

    async def refresh_now(self) -> UsageSnapshot:
        """Re-compute usage from the log and commit the new snapshot.

        On failure the current snapshot is kept and ``last_error`` is set.
        """
        if self.is_busy:
            self._refresh_pending = True
            logger.debug("Refresh already in flight, queued a follow-up")
            return self._snapshot

        self.is_busy = True
        self._inflight = asyncio.create_task(self._refresh_until_settled(), name="usage-refresh")
        # shielded: cancelling the caller never aborts a refresh mid-way
        await asyncio.shield(self._inflight)
        return self._snapshot

    async def _refresh_until_settled(self) -> None:
        try:
            while True:
                self._refresh_pending = False
                await self._refresh_once()
                if not self._refresh_pending:
                    break
        finally:
            self.is_busy = False

    async def _refresh_once(self) -> None:
        self.last_error = None
        now = datetime.now(timezone.utc)
        loop = asyncio.get_running_loop()
        try:
            snapshot, skipped = await loop.run_in_executor(self._executor, self._compute, now)
        except LogNotFoundError as exc:
            self.last_error = str(exc)
            logger.warning("Usage refresh failed: %s", exc)
            return
        except Exception as exc:
            self.last_error = f"Failed to read usage: {exc}"
            logger.exception("Usage refresh failed")
            return

        self.skipped_lines = skipped
        self._commit(snapshot)
        logger.debug(
            "Usage refreshed: session=%d daily=%d weekly=%d monthly=%d",
            snapshot.session.tokens_used,
            snapshot.daily.tokens_used,
            snapshot.weekly.tokens_used,
            snapshot.monthly.tokens_used,
        )

    def _commit(self, snapshot: UsageSnapshot) -> None:
        self._snapshot = snapshot
        self.store.save_snapshot(snapshot)
        self.check_thresholds(snapshot)

    # -- manual override -------------------------------------------------------

    def set_manual_usage(self, values: Mapping[Window | str, int]) -> UsageSnapshot:
        """Replace ``tokens_used`` of the given windows with values read elsewhere.

        Untouched windows and all limits are preserved.  Does not affect the timer.
        """
        replaced: dict[Window, WindowUsage] = {}
        for key, tokens in values.items():
            window = Window(key)
            if tokens < 0:
                raise ValueError(f"Manual usage for {window.value} must be >= 0, got {tokens}")
            replaced[window] = self._snapshot.window(window).with_tokens_used(int(tokens))

        snapshot = self._snapshot.replace_windows(replaced, datetime.now(timezone.utc))
        self._commit(snapshot)
        logger.info("Manual usage set for %s", ", ".join(w.value for w in replaced) or "no windows")
        return snapshot

    def set_manual_usage_percent(self, percents: Mapping[Window | str, float]) -> UsageSnapshot:
        """Like :meth:`set_manual_usage` but with percentages of each window's limit.

        Values outside (0, 100] are ignored.
        """
        values: dict[Window, int] = {}
        for key, pct in percents.items():
            window = Window(key)
            if not 0 < pct <= 100:
                logger.debug("Ignoring out-of-range percentage %s for %s", pct, window.value)
                continue
            limit = self._snapshot.window(window).tokens_limit
            values[window] = int(limit * pct / 100.0)
        if not values:
            return self._snapshot
        return self.set_manual_usage(values)

    # -- settings --------------------------------------------------------------

    async def set_limit(self, window: Window | str, value: int) -> UsageSnapshot:
        """Persist a new limit and refresh so the snapshot reflects it."""
        if window == REQUESTS:
            self.store.set_request_limit(value)
        else:
            self.store.set_token_limit(window, value)
        return await self.refresh_now()

    async def reset_limits(self) -> UsageSnapshot:
        self.store.reset_limits()
        return await self.refresh_now()

    async def set_refresh_interval(self, seconds: int) -> int:
        """Persist the interval and re-arm the timer if monitoring."""
        seconds = clamp_interval(int(seconds))
        self.store.set(REFRESH_INTERVAL, seconds)
        if self._running and self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = asyncio.create_task(
                self._monitor_loop(immediate=False), name="usage-monitor",
            )
        logger.info("Refresh interval set to %ds", seconds)
        return seconds

    def set_token_estimation_ratio(self, ratio: int) -> None:
        if ratio <= 0:
            raise ValueError(f"Token estimation ratio must be positive, got {ratio}")
        self.store.set(TOKEN_ESTIMATION_RATIO, int(ratio))

    def set_notifications(self, show: bool | None = None, threshold: float | None = None) -> None:
        if show is not None:
            self.store.set(SHOW_NOTIFICATIONS, bool(show))
        if threshold is not None:
            if not 0 < threshold <= 100:
                raise ValueError(f"Notification threshold must be in (0, 100], got {threshold}")
            self.store.set(NOTIFICATION_THRESHOLD, float(threshold))

    # -- notifications ---------------------------------------------------------

    def check_thresholds(self, snapshot: UsageSnapshot) -> list[WindowUsage]:
        """Return windows that just crossed the threshold, notifying if enabled.

        A window notifies once per crossing and re-arms after dropping below.
        """
        threshold = self.store.notification_threshold()
        crossed: list[WindowUsage] = []
        for usage in snapshot.windows:
            if usage.percent_used >= threshold:
                if usage.window not in self._above_threshold:
                    self._above_threshold.add(usage.window)
                    crossed.append(usage)
            else:
                self._above_threshold.discard(usage.window)

        if crossed and self.notifier is not None and self.notifier.is_enabled \
                and self.store.show_notifications():
            for usage in crossed:
                self._dispatch(self.notifier.notify_threshold_crossed(
                    usage.window.value,
                    usage.percent_used,
                    usage.tokens_used,
                    usage.tokens_limit,
                    threshold,
                ))
        return crossed

    def _dispatch(self, coro: Coroutine[Any, Any, None]) -> None:
        """Fire-and-forget a notification coroutine."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(coro)
            return
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
