"""CLI command for running the API server.

Usage:
    engageiq serve
    engageiq serve --port 8080 --host 0.0.0.0
    engageiq serve --reload --log-level debug
"""

from __future__ import annotations

import typer

from engageiq.config import settings

app = typer.Typer(help="Run the EngageIQ API server")


@app.callback(invoke_without_command=True)
def serve(
    host: str = typer.Option(settings.host, "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(settings.port, "--port", "-p", help="Port to listen on"),
    reload: bool = typer.Option(
        False,
        "--reload",
        "-r",
        help="Enable auto-reload for development",
    ),
    log_level: str = typer.Option(
        "info",
        "--log-level",
        "-l",
        help="Log level: debug, info, warning, error",
    ),
) -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    typer.echo("Starting EngageIQ server...")
    typer.echo(f"  Host: {host}")
    typer.echo(f"  Port: {port}")
    typer.echo(f"  Workers in process: {'yes' if settings.api_run_workers else 'no'}")
    typer.echo()

    uvicorn.run(
        app="engageiq.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level.lower(),
    )
