"""
aigate providers - Provider inspection commands.

Usage:
    aigate providers list
"""

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from aigate.cli.state import load_cli_config

app = typer.Typer(
    name="providers",
    help="Inspect configured providers.",
)

console = Console()


@app.command("list")
def list_providers(
    ctx: typer.Context,
    show_all: Annotated[
        bool,
        typer.Option(
            "--all",
            "-a",
            help="Include disabled providers.",
        ),
    ] = False,
) -> None:
    """List providers in fallback order."""
    config = load_cli_config(ctx)
    entries = sorted(config.providers, key=lambda entry: entry.priority)
    if not show_all:
        entries = [entry for entry in entries if entry.enabled]

    if not entries:
        console.print("[dim]No providers configured.[/dim]")
        console.print("[dim]Add entries under 'providers:' in your config file.[/dim]")
        return

    table = Table(title="Providers")
    table.add_column("Name", style="cyan")
    table.add_column("Kind")
    table.add_column("Target", style="green")
    table.add_column("Priority", justify="right")
    table.add_column("Concurrency", justify="right")
    table.add_column("RPM", justify="right")
    table.add_column("Status")

    for entry in entries:
        table.add_row(
            entry.name,
            entry.kind,
            entry.model if entry.kind == "litellm" else entry.endpoint,
            str(entry.priority),
            str(entry.max_concurrency),
            f"{entry.requests_per_minute:g}" if entry.requests_per_minute else "-",
            "[green]enabled[/green]" if entry.enabled else "[dim]disabled[/dim]",
        )

    console.print(table)
