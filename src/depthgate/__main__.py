"""CLI entry point for DepthGate."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from depthgate import __version__
from depthgate.config import ConfigError, Settings, load_settings
from depthgate.engine.cli import register_cli_commands
from depthgate.gate.events import (
    NetworkStatusChanged,
    NotificationPermissionRequested,
    NotificationPromptDismissed,
)
from depthgate.gate.notifications import StaticPermissionAdapter
from depthgate.gate.persistence import GatePersistence, Key
from depthgate.gate.runtime import GateRuntime
from depthgate.gate.state import GateState
from depthgate.logs import MASK, setup_logging

console = Console()


def _read_json(path: str | None, label: str) -> dict[str, Any] | None:
    if path is None:
        return None
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Error: cannot read {label} file {path}: {e}[/red]")
        sys.exit(1)
    if not isinstance(data, dict):
        console.print(f"[red]Error: {label} file {path} must hold a JSON object[/red]")
        sys.exit(1)
    return data


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--settings",
    "settings_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML settings file",
)
@click.option("--log-level", default="WARNING", help="Log level")
@click.pass_context
def cli(ctx: click.Context, settings_path: str | None, log_level: str):
    """DepthGate - decide between local content and the remote web view."""
    try:
        settings = load_settings(Path(settings_path) if settings_path else None)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    setup_logging(log_level, settings.secrets)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["log_level"] = log_level


async def _run_launch(
    settings: Settings,
    tracking: dict[str, Any] | None,
    navigation: dict[str, Any] | None,
    push: dict[str, Any] | None,
    offline: bool,
    answer: str | None,
) -> tuple[GateState, bool]:
    runtime = GateRuntime(
        settings,
        permissions=StaticPermissionAdapter(granted=answer == "grant"),
    )
    try:
        if push is not None and runtime.push.process(push) is None:
            console.print("[yellow]Push payload carries no URL, ignoring[/yellow]")

        runtime.start()
        if offline:
            runtime.store.dispatch(NetworkStatusChanged(connected=False))
        if navigation is not None:
            runtime.collector.receive_navigation(navigation)
        if tracking is not None:
            runtime.collector.receive_tracking(tracking)

        state = await runtime.store.wait_until_decided(
            timeout=settings.decision_timeout_seconds + 5
        )

        if state.ui.show_notification_prompt and answer is not None:
            if answer == "dismiss":
                runtime.store.dispatch(NotificationPromptDismissed())
            else:
                runtime.store.dispatch(NotificationPermissionRequested())
                await runtime.store.settle_permission()

        return runtime.store.state, runtime.store.locked
    finally:
        await runtime.close()


@cli.command()
@click.option("--tracking", type=click.Path(exists=True), help="Conversion data JSON")
@click.option("--navigation", type=click.Path(exists=True), help="Deep link JSON")
@click.option("--push", type=click.Path(exists=True), help="Push payload JSON")
@click.option("--offline", is_flag=True, help="Report the network as unavailable")
@click.option(
    "--notifications",
    type=click.Choice(["grant", "deny", "dismiss"]),
    default=None,
    help="Answer to the notification prompt, if it is shown",
)
@click.option("--output", "-o", type=click.Path(), help="Output JSON to file")
@click.pass_context
def run(
    ctx: click.Context,
    tracking: str | None,
    navigation: str | None,
    push: str | None,
    offline: bool,
    notifications: str | None,
    output: str | None,
):
    """Run one launch decision against the configured services.

    Example: depthgate run --tracking conversion.json --notifications dismiss
    """
    settings: Settings = ctx.obj["settings"]
    tracking_data = _read_json(tracking, "tracking")
    navigation_data = _read_json(navigation, "navigation")
    push_data = _read_json(push, "push")

    console.print("[bold blue]Running launch gate...[/bold blue]")
    try:
        state, locked = asyncio.run(
            _run_launch(
                settings,
                tracking_data,
                navigation_data,
                push_data,
                offline,
                notifications,
            )
        )
    except asyncio.TimeoutError:
        console.print("[red]Error: no decision was reached[/red]")
        sys.exit(1)

    table = Table(title="Gate Decision")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Phase", state.phase.kind.value)
    table.add_row("Endpoint", state.phase.endpoint or "-")
    table.add_row("Locked", "yes" if locked else "no")
    table.add_row("Mode", state.config.mode or "-")
    table.add_row("First Launch", "yes" if state.config.first_launch else "no")
    table.add_row("Notifications", state.config.notifications.status.value)
    table.add_row("Show Prompt", str(state.ui.show_notification_prompt))
    table.add_row("Offline View", str(state.ui.show_offline_view))
    table.add_row("Navigate Main", str(state.ui.navigate_main))
    table.add_row("Navigate Web", str(state.ui.navigate_web))
    console.print(table)

    if output:
        result = state.to_dict()
        result["locked"] = locked
        Path(output).write_text(json.dumps(result, indent=2), encoding="utf-8")
        console.print(f"[green]✓ Output written to {output}[/green]")


@cli.command()
@click.pass_context
def state(ctx: click.Context):
    """Show persisted gate records."""
    settings: Settings = ctx.obj["settings"]
    if not settings.db_path.exists():
        console.print(f"[yellow]No gate database at {settings.db_path}[/yellow]")
        return

    persistence = GatePersistence.open(settings.db_path)
    try:
        snapshot = persistence.snapshot()
    finally:
        persistence.close()

    table = Table(title="Gate Records")
    table.add_column("Namespace", style="cyan")
    table.add_column("Key", style="magenta")
    table.add_column("Value", style="green")
    for namespace, records in snapshot.items():
        for key, value in sorted(records.items()):
            shown = MASK if key == Key.PUSH_TOKEN else value
            table.add_row(namespace, key, shown)
    console.print(table)


@cli.command()
@click.option("--confirm-destroy", is_flag=True, help="Required flag to confirm reset")
@click.pass_context
def reset(ctx: click.Context, confirm_destroy: bool):
    """Delete the gate database.

    The next launch behaves like a first install. Requires
    --confirm-destroy flag to prevent accidents.
    """
    settings: Settings = ctx.obj["settings"]
    if not confirm_destroy:
        console.print("[red]Error: This will delete every stored gate record.[/red]")
        console.print("[yellow]Run with --confirm-destroy to proceed.[/yellow]")
        sys.exit(1)

    db_path = settings.db_path
    deleted = []
    for candidate in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
        if candidate.exists():
            candidate.unlink()
            deleted.append(candidate.name)

    if deleted:
        console.print(f"[green]✓ Deleted: {', '.join(deleted)}[/green]")
    else:
        console.print("[dim]Nothing to delete.[/dim]")


register_cli_commands(cli)


if __name__ == "__main__":
    cli()
