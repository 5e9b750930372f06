"""Database commands - init-db, stats."""

from __future__ import annotations

import asyncio

import typer
from rich.table import Table

from ..config import get_settings
from ..store import AsyncStore
from . import app, console


@app.command("init-db")
def init_db(
    db_path: str | None = typer.Option(
        None,
        "--db",
        help="Path to database file.",
    ),
):
    """Initialize the database schema.

    Creates the SQLite database and tables if they don't exist.
    """
    path = db_path or get_settings().db_path

    async def _init():
        store = AsyncStore(path)
        await store.connect()
        try:
            await store.init_db()
        finally:
            await store.close()

    asyncio.run(_init())
    console.print(f"[green]✓ Database initialized:[/green] {path}")


@app.command()
def stats(
    db_path: str | None = typer.Option(
        None,
        "--db",
        help="Path to database file.",
    ),
):
    """Show database statistics."""
    path = db_path or get_settings().db_path

    async def _stats():
        store = AsyncStore(path)
        await store.connect()
        try:
            await store.init_db()
            return await store.get_stats()
        finally:
            await store.close()

    stats = asyncio.run(_stats())

    table = Table(title="Database Statistics", show_header=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Users", str(stats.get("total_users", 0)))
    table.add_row("Active API Keys", str(stats.get("active_api_keys", 0)))
    table.add_row("Paid Subscriptions", str(stats.get("paid_subscriptions", 0)))
    table.add_row("Requests Today", str(stats.get("requests_today", 0)))
    table.add_row("Endpoint Alerts", str(stats.get("endpoint_alerts", 0)))

    console.print(table)
