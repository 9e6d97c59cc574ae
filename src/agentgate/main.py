"""Main CLI entry point for Agentgate.

Usage:
    agentgate serve --port 8080
    agentgate token alice
    agentgate status --url http://localhost:8080 --user alice
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import httpx
import typer
from rich.console import Console
from rich.table import Table

from agentgate.auth.tokens import issue_token
from agentgate.config import GatewayConfig, load_config
from agentgate.logging import setup_logging

app = typer.Typer(
    name="agentgate",
    help="Agentgate: HTTP gateway to a pool of warm coding-agent workers",
    no_args_is_help=True,
)

console = Console()

_config: GatewayConfig | None = None


def get_config() -> GatewayConfig:
    """Return the configuration loaded by the CLI callback.

    Raises:
        RuntimeError: If the callback has not run yet
    """
    if _config is None:
        raise RuntimeError("Configuration not loaded. Run through the agentgate CLI.")
    return _config


@app.command()
def serve(
    host: Annotated[
        Optional[str],
        typer.Option("--host", "-h", help="Host to bind to (default: from config)"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port to bind to (default: from config)"),
    ] = None,
) -> None:
    """Start the gateway and its worker pool."""
    import uvicorn

    from agentgate.web.app import create_app

    config = get_config()
    bind_host = host or config.web.host
    bind_port = port or config.web.port

    console.print("[bold cyan]Starting Agentgate[/bold cyan]")
    console.print(f"[dim]Host:[/dim] {bind_host}")
    console.print(f"[dim]Port:[/dim] {bind_port}")
    console.print(f"[dim]Pool size:[/dim] {config.queue.pool_size}")
    console.print()

    uvicorn.run(
        create_app(config),
        host=bind_host,
        port=bind_port,
        log_level=config.logging.level.lower(),
    )


@app.command()
def token(
    username: Annotated[str, typer.Argument(help="Identity to embed in the token")] = "",
) -> None:
    """Mint a bearer token with the configured secret.

    An empty username yields a token for the anonymous caller.
    """
    config = get_config()
    typer.echo(issue_token(username, config.auth.secret))


@app.command()
def status(
    url: Annotated[
        str,
        typer.Option("--url", "-u", help="Base URL of a running gateway"),
    ] = "http://localhost:8080",
    user: Annotated[
        str,
        typer.Option("--user", help="Identity used to authenticate"),
    ] = "",
) -> None:
    """Show worker, backlog, and session state of a running gateway."""
    config = get_config()
    headers = {"Authorization": f"Bearer {issue_token(user, config.auth.secret)}"}

    try:
        response = httpx.get(f"{url.rstrip('/')}/status", headers=headers, timeout=10.0)
        response.raise_for_status()
    except httpx.HTTPError as e:
        console.print(f"[red]Failed to fetch status:[/red] {e}")
        raise typer.Exit(code=1)

    data = response.json()

    workers = Table(title="Workers")
    workers.add_column("ID", style="cyan")
    workers.add_column("State")
    workers.add_column("Busy since", style="dim")
    for worker in data.get("workers", []):
        workers.add_row(worker["id"], worker["state"], str(worker.get("busySince") or "-"))
    console.print(workers)

    console.print(
        f"Queue: {data.get('queueLength', 0)}/{data.get('maxQueueSize', 0)}  "
        f"processed={data.get('totalProcessed', 0)}  errors={data.get('totalErrors', 0)}"
    )

    sessions = data.get("sessions", [])
    if sessions:
        table = Table(title="Sessions")
        table.add_column("ID", style="cyan")
        table.add_column("Last activity", style="dim")
        table.add_column("Processing")
        for session in sessions:
            table.add_row(
                session["id"],
                str(session["lastActivity"]),
                "yes" if session["processing"] else "no",
            )
        console.print(table)
    else:
        console.print("[dim]No active sessions[/dim]")


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Load configuration and set up logging for every command."""
    global _config

    try:
        config = load_config(config_path)
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1)

    if verbose:
        config.logging.level = "DEBUG"
    setup_logging(config.logging)
    _config = config

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
