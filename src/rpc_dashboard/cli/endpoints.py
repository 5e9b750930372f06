"""Endpoint health command - endpoints-check."""

from __future__ import annotations

import asyncio

import typer
from rich.table import Table

from ..config import get_settings
from ..http_client import create_http_client
from ..load_balancer import LoadBalancer
from . import app, console


@app.command("endpoints-check")
def endpoints_check(
    timeout: float | None = typer.Option(None, "--timeout", "-t", help="Probe timeout in seconds."),
):
    """Probe the backend and every fallback endpoint with getHealth."""
    settings = get_settings()

    async def _check():
        async with create_http_client() as client:
            balancer = LoadBalancer(
                backend_url=settings.rpc_backend_url,
                fallback_urls=settings.fallback_rpc_urls,
                client=client,
                probe_timeout=settings.health_probe_timeout,
            )
            return await balancer.check_all(timeout or settings.monitor_probe_timeout)

    results = asyncio.run(_check())

    table = Table(title="Endpoint Health", show_header=True)
    table.add_column("Endpoint")
    table.add_column("Status")
    table.add_column("Latency", justify="right")

    for url, health in results.items():
        status = "[green]healthy[/green]" if health.healthy else "[red]unhealthy[/red]"
        table.add_row(url, status, f"{health.latency_ms} ms")

    console.print(table)
    if not any(h.healthy for h in results.values()):
        raise typer.Exit(1)
