"""FastAPI server exposing the usage monitor."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import router
from src.notifications import NotificationManager
from src.token_tracker.limits import LimitsStore
from src.token_tracker.monitor import UsageMonitor

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the store + monitor on startup and start monitoring."""
    store = LimitsStore()
    monitor = UsageMonitor(store, notifier=NotificationManager())
    app.state.limits_store = store
    app.state.monitor = monitor

    try:
        await monitor.start_monitoring()
    except Exception:
        logger.exception("Usage monitor failed to start")

    yield

    # Shutdown
    await monitor.close()
    store.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Claude Usage Gauge",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
