"""Command line interface for the Multi-RPC dashboard.

Commands live in one module per concern: ``web`` (server), ``db`` (schema and
stats), ``keys`` (API key management) and ``endpoints`` (health checks).
"""

from __future__ import annotations

import typer
from rich.console import Console

from ..logging_config import configure_logging

app = typer.Typer(
    name="rpc-dashboard",
    help="Operate the Multi-RPC dashboard: serve the web app, manage keys and check endpoints.",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        from .. import __version__

        console.print(f"rpc-dashboard {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level for command output."),
):
    """Multi-RPC Dashboard - accounts, API keys, billing and a JSON-RPC proxy."""
    configure_logging(log_level)


from . import db, endpoints, keys, web  # noqa: E402, F401
