"""Shared CLI state: the root command's options and config loading."""

from pathlib import Path

import typer

from aigate.cli.output import print_error, setup_logging
from aigate.config import Config, ConfigurationError, load_config


def _root_options(ctx: typer.Context) -> dict:
    root = ctx.find_root()
    return root.obj if isinstance(root.obj, dict) else {}


def get_config_file(ctx: typer.Context) -> Path | None:
    """The ``--config`` path given to the root command, if any."""
    return _root_options(ctx).get("config_file")


def load_cli_config(ctx: typer.Context) -> Config:
    """
    Load configuration for a command and apply its logging section.

    ``--verbose`` on the root command wins over the configured level.

    Raises:
        typer.Exit: With status 1 when the configuration is invalid.
    """
    try:
        config = load_config(config_file=get_config_file(ctx))
    except ConfigurationError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)

    level = "DEBUG" if _root_options(ctx).get("verbose") else config.logging.level
    setup_logging(level, config.logging.rich_tracebacks)
    return config
