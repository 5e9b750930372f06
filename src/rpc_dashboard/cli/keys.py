"""API key commands - keys-create, keys-list, keys-revoke."""

from __future__ import annotations

import asyncio

import typer
from rich.table import Table

from ..api_keys import ApiKeyManager
from ..config import get_settings
from ..errors import ValidationError
from ..store import AsyncStore
from . import app, console


async def _open_store(db_path: str | None) -> AsyncStore:
    store = AsyncStore(db_path or get_settings().db_path)
    await store.connect()
    await store.init_db()
    return store


@app.command("keys-create")
def keys_create(
    privy_id: str = typer.Argument(..., help="Privy user ID of the key owner."),
    name: str = typer.Option("CLI Key", "--name", "-n", help="Display name for the key."),
    expires_in: int | None = typer.Option(None, "--expires-in", help="Days until the key expires."),
    db_path: str | None = typer.Option(None, "--db", help="Path to database file."),
):
    """Create an API key for a user, provisioning the user if needed.

    The plaintext key is printed once and cannot be recovered later.
    """

    async def _create():
        store = await _open_store(db_path)
        try:
            user = await store.ensure_user(privy_id)
            return await ApiKeyManager(store).create(user["id"], name, expires_in_days=expires_in)
        finally:
            await store.close()

    try:
        row, key = asyncio.run(_create())
    except ValidationError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)

    console.print(f"[green]✓ Created key[/green] {row['id']} ({row['name']})")
    console.print(f"[bold]{key}[/bold]")
    console.print("[dim]Store this key now; it will not be shown again.[/dim]")


@app.command("keys-list")
def keys_list(
    privy_id: str = typer.Argument(..., help="Privy user ID of the key owner."),
    db_path: str | None = typer.Option(None, "--db", help="Path to database file."),
):
    """List a user's API keys."""

    async def _list():
        store = await _open_store(db_path)
        try:
            user = await store.get_user_by_privy_id(privy_id)
            if not user:
                return None
            return await ApiKeyManager(store).list(user["id"])
        finally:
            await store.close()

    keys = asyncio.run(_list())
    if keys is None:
        console.print(f"[yellow]No user with Privy ID {privy_id}[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"API Keys for {privy_id}", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Prefix")
    table.add_column("Active")
    table.add_column("Limits (s/day/month)", justify="right")
    table.add_column("Last Used")

    for k in keys:
        table.add_row(
            k["id"],
            k["name"],
            k["prefix"],
            "[green]yes[/green]" if k["active"] else "[red]no[/red]",
            f"{k['rate_limit']}/{k['daily_limit']}/{k['monthly_limit']}",
            k["last_used_at"] or "-",
        )

    console.print(table)


@app.command("keys-revoke")
def keys_revoke(
    privy_id: str = typer.Argument(..., help="Privy user ID of the key owner."),
    key_id: str = typer.Argument(..., help="ID of the key to revoke."),
    db_path: str | None = typer.Option(None, "--db", help="Path to database file."),
):
    """Deactivate an API key. The record is kept for usage history."""

    async def _revoke():
        store = await _open_store(db_path)
        try:
            user = await store.get_user_by_privy_id(privy_id)
            if not user:
                return False
            return await ApiKeyManager(store).revoke(user["id"], key_id)
        finally:
            await store.close()

    if not asyncio.run(_revoke()):
        console.print("[red]Error:[/red] API key not found")
        raise typer.Exit(1)
    console.print(f"[green]✓ Revoked key[/green] {key_id}")
