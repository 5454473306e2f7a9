"""CLI commands for EngageIQ.

Provides command-line interface using Typer:
- engageiq serve: Run the API server
- engageiq worker: Run the queue workers and scheduler
- engageiq stats: Show queue counts and cache stats
- engageiq cache-health: Check the cache round trip

Usage:
    engageiq --help
    engageiq serve --port 8080
    engageiq worker --no-scheduler
    engageiq stats --format json
"""

import typer

from engageiq.cli.serve import app as serve_app
from engageiq.cli.stats_cmd import health_app, stats_app
from engageiq.cli.worker_cmd import app as worker_app

# Main CLI application
app = typer.Typer(
    name="engageiq",
    help="EngageIQ: response cache and background jobs for social analytics",
    no_args_is_help=True,
)

app.add_typer(serve_app, name="serve")
app.add_typer(worker_app, name="worker")
app.add_typer(stats_app, name="stats")
app.add_typer(health_app, name="cache-health")


@app.callback()
def callback() -> None:
    """EngageIQ: response cache and background jobs for social analytics."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
