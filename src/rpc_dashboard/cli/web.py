"""Web server CLI command."""

import typer
import uvicorn

from ..config import get_settings
from . import app, console


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host to bind to."),
    port: int = typer.Option(8000, help="Port to bind to."),
    reload: bool = typer.Option(False, help="Enable auto-reload."),
):
    """Serve the dashboard pages, the JSON API and the /api/rpc proxy."""
    missing = get_settings().missing_required()
    if missing:
        console.print(
            f"[yellow]Missing {', '.join(missing)}: running in development mode "
            "(bearer tokens are taken as Privy user IDs).[/yellow]"
        )

    console.print(f"[bold]Multi-RPC dashboard[/bold] on http://{host}:{port}")
    uvicorn.run(
        "rpc_dashboard.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )
