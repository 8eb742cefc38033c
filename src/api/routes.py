"""API routes for the usage monitor.

Endpoints:
  GET  /api/usage                current snapshot, busy flag, last error
  POST /api/usage/refresh        refresh now
  POST /api/usage/manual         override tokens used per window
  POST /api/usage/manual/percent override as percentage of each limit
  PUT  /api/limits/{window}      set a limit (session/daily/weekly/monthly/requests)
  DELETE /api/limits             reset limits to defaults
  GET  /api/settings             refresh interval, ratio, notifications
  PUT  /api/settings             update any of the above
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from src.token_tracker.models import Window
from src.token_tracker.monitor import REQUESTS, UsageMonitor

logger = logging.getLogger(__name__)

router = APIRouter()


# -- Request models ------------------------------------------------------------


class LimitRequest(BaseModel):
    value: int = Field(gt=0)


class SettingsRequest(BaseModel):
    refresh_interval: int | None = None
    token_estimation_ratio: int | None = Field(default=None, gt=0)
    show_notifications: bool | None = None
    notification_threshold: float | None = Field(default=None, ge=50, le=95)


def _monitor(request: Request) -> UsageMonitor:
    return request.app.state.monitor


# -- Usage -----------------------------------------------------------------------


@router.get("/usage")
def get_usage(request: Request) -> dict[str, Any]:
    return _monitor(request).status()


@router.post("/usage/refresh")
async def refresh_usage(request: Request) -> dict[str, Any]:
    monitor = _monitor(request)
    await monitor.refresh_now()
    return monitor.status()


@router.post("/usage/manual")
async def manual_usage(body: dict[Window, int], request: Request) -> dict[str, Any]:
    monitor = _monitor(request)
    try:
        monitor.set_manual_usage(body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return monitor.status()


@router.post("/usage/manual/percent")
async def manual_usage_percent(body: dict[Window, float], request: Request) -> dict[str, Any]:
    monitor = _monitor(request)
    monitor.set_manual_usage_percent(body)
    return monitor.status()


# -- Limits ----------------------------------------------------------------------


@router.put("/limits/{window}")
async def set_limit(window: str, body: LimitRequest, request: Request) -> dict[str, Any]:
    if window != REQUESTS and window not in {w.value for w in Window}:
        raise HTTPException(status_code=404, detail=f"Unknown window: {window}")
    monitor = _monitor(request)
    await monitor.set_limit(window, body.value)
    return monitor.status()


@router.delete("/limits")
async def reset_limits(request: Request) -> dict[str, Any]:
    monitor = _monitor(request)
    await monitor.reset_limits()
    return monitor.status()


# -- Settings --------------------------------------------------------------------


def _settings_dict(monitor: UsageMonitor) -> dict[str, Any]:
    store = monitor.store
    limits = store.resolve_limits()
    return {
        "refresh_interval": store.refresh_interval(),
        "token_estimation_ratio": store.token_estimation_ratio(),
        "show_notifications": store.show_notifications(),
        "notification_threshold": store.notification_threshold(),
        "limits": {
            "session": limits.session_tokens,
            "daily": limits.daily_tokens,
            "weekly": limits.weekly_tokens,
            "monthly": limits.monthly_tokens,
            "requests": limits.session_requests,
        },
        "history_path": str(monitor.history_path),
        "notifier": monitor.notifier.status() if monitor.notifier else {"enabled": False},
    }


@router.get("/settings")
def get_settings(request: Request) -> dict[str, Any]:
    return _settings_dict(_monitor(request))


@router.put("/settings")
async def update_settings(body: SettingsRequest, request: Request) -> dict[str, Any]:
    monitor = _monitor(request)
    if body.refresh_interval is not None:
        await monitor.set_refresh_interval(body.refresh_interval)
    if body.token_estimation_ratio is not None:
        monitor.set_token_estimation_ratio(body.token_estimation_ratio)
    monitor.set_notifications(body.show_notifications, body.notification_threshold)
    return _settings_dict(monitor)
