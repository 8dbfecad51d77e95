"""CLI command for the local gate API.

Commands:
- depthgate serve [--host 127.0.0.1] [--port PORT]
"""

from __future__ import annotations

import sys

import click
from rich.console import Console

console = Console()


@click.command()
@click.option("--host", default="127.0.0.1", help="Bind host (127.0.0.1 only)")
@click.option("--port", default=47300, help="Bind port")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int):
    """Serve the local gate API.

    SDK callbacks, push payloads and notification answers are posted to
    /v1/gate/*; the decision is read back from /v1/gate/state.
    """
    from depthgate.engine.app import run_gate_server

    if host != "127.0.0.1":
        console.print("[red]Error: Gate API must bind to 127.0.0.1 only[/red]")
        sys.exit(1)

    obj = ctx.obj or {}
    settings = obj.get("settings")
    log_level = obj.get("log_level", "info")

    console.print("[bold blue]Starting DepthGate API[/bold blue]")
    console.print(f"[dim]Binding to http://{host}:{port}[/dim]")

    try:
        run_gate_server(
            host=host,
            port=port,
            settings=settings,
            log_level=log_level.lower(),
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Gate API stopped by user[/yellow]")


def register_cli_commands(cli_group):
    """Register engine CLI commands with the main CLI."""
    cli_group.add_command(serve)
