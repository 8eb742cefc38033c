"""Entry point for the Claude usage gauge."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from src.config import settings
from src.token_tracker.limits import LimitsStore
from src.token_tracker.models import UsageLevel, UsageSnapshot
from src.token_tracker.monitor import UsageMonitor

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)

_LEVEL_STYLE = {
    UsageLevel.OK: "green",
    UsageLevel.WARNING: "yellow",
    UsageLevel.CRITICAL: "bold red",
}


def run_server() -> None:
    """Start the FastAPI server."""
    console.print(Panel("Starting usage gauge API server", style="bold green"))
    uvicorn.run(
        "src.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def render_snapshot(snapshot: UsageSnapshot) -> Table:
    table = Table(title=f"Claude usage (updated {snapshot.last_updated.astimezone():%Y-%m-%d %H:%M})")
    table.add_column("Window")
    table.add_column("Used", justify="right")
    table.add_column("%", justify="right")
    table.add_column("Resets")

    for usage in snapshot.windows:
        style = _LEVEL_STYLE[usage.level]
        used = usage.formatted_usage
        if usage.requests_limit is not None:
            used += f"  ({usage.requests_used}/{usage.requests_limit} req)"
        table.add_row(
            usage.window.value.capitalize(),
            used,
            f"[{style}]{usage.percent_used:.0f}%[/{style}]",
            usage.resets_in_text(),
        )
    return table


def run_status() -> None:
    """Refresh once and print the snapshot."""
    store = LimitsStore()
    monitor = UsageMonitor(store)

    async def _refresh() -> None:
        try:
            await monitor.refresh_now()
        finally:
            await monitor.close()

    with console.status("[bold green]Reading history..."):
        asyncio.run(_refresh())

    if monitor.last_error:
        console.print(f"[yellow]{monitor.last_error}, showing last known usage[/yellow]")
    console.print(render_snapshot(monitor.current_snapshot))
    if monitor.skipped_lines:
        console.print(f"[dim]{monitor.skipped_lines} malformed line(s) skipped[/dim]")
    store.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Claude usage gauge")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the API server")
    sub.add_parser("status", help="Print current usage")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "status":
        run_status()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
