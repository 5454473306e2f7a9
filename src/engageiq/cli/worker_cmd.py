"""CLI command for running the queue workers and the scheduler.

Usage:
    engageiq worker
    engageiq worker --no-scheduler
"""

from __future__ import annotations

import asyncio
import logging
import signal

import typer

from engageiq.config import settings
from engageiq.observability import configure_logging
from engageiq.observability.metrics import get_metrics
from engageiq.services import Services

logger = logging.getLogger(__name__)

app = typer.Typer(help="Run the background job workers")


async def run_workers(config_overrides: dict[str, object]) -> None:
    """Run every queue worker until SIGINT or SIGTERM, then shut down gracefully."""
    config = settings.model_copy(update=config_overrides)
    services = Services.build(config)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    await services.start(run_workers=True)
    logger.info("Workers running, waiting for shutdown signal")
    try:
        await stop.wait()
        logger.info("Received shutdown signal")
    finally:
        await services.close()


@app.callback(invoke_without_command=True)
def worker(
    scheduler: bool = typer.Option(
        settings.enable_scheduler,
        "--scheduler/--no-scheduler",
        help="Also enqueue recurring jobs from this process",
    ),
    log_level: str = typer.Option(settings.log_level, "--log-level", "-l", help="Log level"),
    json_logs: bool = typer.Option(
        settings.env != "dev",
        "--json-logs/--console-logs",
        help="Log format",
    ),
) -> None:
    """Process jobs from all queues."""
    configure_logging(json_format=json_logs, level=log_level)
    get_metrics()

    typer.echo(f"Starting workers (scheduler: {'on' if scheduler else 'off'})")
    asyncio.run(run_workers({"enable_scheduler": scheduler}))
