"""
aigate telemetry - Telemetry log access commands.

Usage:
    aigate telemetry tail
    aigate telemetry tail --type breaker_transition -n 50
"""

import json
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from aigate.cli.state import load_cli_config
from aigate.telemetry import TelemetryEventType, read_events

app = typer.Typer(
    name="telemetry",
    help="Telemetry log access.",
)

console = Console()

_RESERVED = ("timestamp", "event_type")


@app.command()
def tail(
    ctx: typer.Context,
    lines: Annotated[
        int,
        typer.Option(
            "--lines",
            "-n",
            help="Number of events to show.",
        ),
    ] = 20,
    event_type: Annotated[
        str | None,
        typer.Option(
            "--type",
            help="Filter by event type.",
        ),
    ] = None,
) -> None:
    """View recent telemetry events."""
    if event_type is not None:
        try:
            event_type = TelemetryEventType(event_type).value
        except ValueError:
            valid = ", ".join(t.value for t in TelemetryEventType)
            console.print(f"[red]Unknown event type '{event_type}'. Valid types: {valid}[/red]")
            raise typer.Exit(1)

    config = load_cli_config(ctx)
    events = read_events(config.telemetry.path)
    if event_type is not None:
        events = [event for event in events if event.get("event_type") == event_type]
    events = events[-lines:] if lines > 0 else []

    if not events:
        console.print(f"[dim]No telemetry events in {config.telemetry.path}.[/dim]")
        if not config.telemetry.enable:
            console.print("[dim]Enable with 'telemetry.enable: true' in your config.[/dim]")
        return

    table = Table(title="Telemetry")
    table.add_column("Time", style="dim")
    table.add_column("Event", style="cyan")
    table.add_column("Details")

    for event in events:
        details = {key: value for key, value in event.items() if key not in _RESERVED}
        table.add_row(
            str(event.get("timestamp", "-")),
            str(event.get("event_type", "-")),
            json.dumps(details, default=str),
        )

    console.print(table)
