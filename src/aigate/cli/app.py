"""
Main Typer application for the aigate CLI.

This module defines the root CLI application and registers all command groups.
"""

from pathlib import Path
from typing import Annotated

import typer

from aigate import __version__
from aigate.cli.commands import config, providers, sync, telemetry
from aigate.cli.output import print_info, setup_logging

app = typer.Typer(
    name="aigate",
    help="Resilient request routing for AI inference providers.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        print_info(f"aigate version [green]{__version__}[/green]")
        raise typer.Exit()


# noinspection PyUnusedLocal
@app.callback()
def main_callback(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    config_file: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Extra config file merged over global and project config.",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging.",
        ),
    ] = False,
) -> None:
    """
    [bold blue]aigate[/bold blue] - AI provider gateway

    Inspect configuration, providers, deferred requests and telemetry.
    """
    ctx.obj = {"config_file": config_file, "verbose": verbose}
    setup_logging("DEBUG" if verbose else "WARNING")


# Register command groups
app.add_typer(config.app, name="config")
app.add_typer(providers.app, name="providers")
app.add_typer(sync.app, name="sync")
app.add_typer(telemetry.app, name="telemetry")


if __name__ == "__main__":
    app()
