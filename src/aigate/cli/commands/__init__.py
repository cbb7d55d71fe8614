"""CLI command groups for aigate."""

from aigate.cli.commands import config, providers, sync, telemetry

__all__ = [
    "config",
    "providers",
    "sync",
    "telemetry",
]
