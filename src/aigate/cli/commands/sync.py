"""
aigate sync - Durable sync queue commands.

Usage:
    aigate sync list
    aigate sync count
    aigate sync clear --yes
"""

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from aigate.cli.output import print_success, print_warning
from aigate.cli.state import load_cli_config
from aigate.sync import JsonlSyncStore

app = typer.Typer(
    name="sync",
    help="Inspect and manage deferred requests.",
)

console = Console()


def _open_store(ctx: typer.Context) -> JsonlSyncStore:
    config = load_cli_config(ctx)
    if config.sync.backend != "jsonl":
        print_warning(f"Sync backend is '{config.sync.backend}', nothing is persisted.")
        raise typer.Exit(0)
    return JsonlSyncStore.from_config(config.sync)


@app.command("list")
def list_pending(ctx: typer.Context) -> None:
    """List deferred requests in replay order."""
    store = _open_store(ctx)
    items = sorted(store.list_pending(), key=lambda item: item.sort_key)

    if not items:
        console.print("[dim]No deferred requests.[/dim]")
        return

    table = Table(title=f"Deferred Requests ({store.path})")
    table.add_column("ID", style="cyan")
    table.add_column("Request")
    table.add_column("Provider", style="green")
    table.add_column("Priority")
    table.add_column("Enqueued")
    table.add_column("Attempts", justify="right")

    for item in items:
        table.add_row(
            item.id[:12],
            item.request.id[:12],
            item.provider or "-",
            item.request.priority.value,
            item.enqueued_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(item.attempt),
        )

    console.print(table)


@app.command()
def count(ctx: typer.Context) -> None:
    """Show how many requests are waiting for replay."""
    store = _open_store(ctx)
    console.print(str(store.count()))


@app.command()
def clear(
    ctx: typer.Context,
    yes: Annotated[
        bool,
        typer.Option(
            "--yes",
            "-y",
            help="Skip confirmation.",
        ),
    ] = False,
) -> None:
    """Drop every deferred request."""
    store = _open_store(ctx)
    pending = store.count()
    if pending == 0:
        console.print("[dim]No deferred requests.[/dim]")
        return

    if not yes and not typer.confirm(f"Drop {pending} deferred request(s)?"):
        console.print("[dim]Aborted.[/dim]")
        raise typer.Exit(1)

    removed = store.clear()
    store.compact()
    print_success(f"Removed {removed} deferred request(s).")
