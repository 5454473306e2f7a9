"""CLI commands for inspecting queues and the cache.

Usage:
    engageiq stats
    engageiq stats --format json
    engageiq cache-health
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import orjson
import typer

from engageiq.cache.redis import close_redis, create_redis
from engageiq.cache.service import CacheService, HealthReport
from engageiq.config import settings
from engageiq.errors import QueueBackendError
from engageiq.jobs.service import JobQueueService

if TYPE_CHECKING:
    from rich.console import Console

stats_app = typer.Typer(help="Show queue counts and cache utilization")
health_app = typer.Typer(help="Check the cache round trip")

COLUMNS = ("waiting", "active", "delayed", "completed", "failed")
STATUS_COLORS = {"healthy": "green", "degraded": "yellow", "unhealthy": "red"}


async def collect_stats() -> dict[str, Any]:
    client = create_redis(settings)
    try:
        jobs = JobQueueService(client, settings)
        cache = CacheService(client, settings)
        return {"queues": await jobs.get_queue_stats(), "cache": await cache.get_stats()}
    finally:
        await close_redis(client)


async def collect_health() -> HealthReport:
    client = create_redis(settings)
    try:
        return await CacheService(client, settings).health_check()
    finally:
        await close_redis(client)


def _print_stats(console: Console, stats: dict[str, Any]) -> None:
    from rich.table import Table

    table = Table(title="Job queues")
    table.add_column("Queue", style="bold")
    for column in COLUMNS:
        table.add_column(column.capitalize(), justify="right")
    for name, counts in stats["queues"].items():
        table.add_row(name, *(str(counts.get(c, 0)) for c in COLUMNS))
    console.print(table)

    cache = stats["cache"]
    connected = cache["remote"]["connected"]
    console.print()
    console.print("[bold]Cache:[/bold]")
    console.print(f"  Local entries: {cache['local']['size']}/{cache['local']['max_size']}")
    console.print(
        f"  Redis: {'[green]connected[/green]' if connected else '[red]disconnected[/red]'}"
        f" ({cache['remote']['memory_usage']})"
    )


@stats_app.callback(invoke_without_command=True)
def stats(
    output_format: str = typer.Option("text", "--format", "-f", help="Output format: text, json"),
) -> None:
    """Show per-queue job counts and cache stats."""
    from rich.console import Console

    console = Console()
    try:
        result = asyncio.run(collect_stats())
    except QueueBackendError as e:
        console.print(f"[red]Queue backend unavailable:[/red] {e}")
        raise typer.Exit(code=1)

    if output_format == "json":
        console.print(orjson.dumps(result, option=orjson.OPT_INDENT_2).decode())
    else:
        _print_stats(console, result)


@health_app.callback(invoke_without_command=True)
def cache_health() -> None:
    """Round-trip a value through Redis and report the cache status."""
    from rich.console import Console

    console = Console()
    report = asyncio.run(collect_health())
    color = STATUS_COLORS[report["status"]]
    console.print(f"[{color}]{report['status']}[/{color}]: {report['details']}")
    if report["status"] != "healthy":
        raise typer.Exit(code=1)
