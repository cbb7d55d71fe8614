"""
Output formatting utilities for the CLI.

Provides consistent output formatting and logging setup across all CLI
commands.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

# Global console instance
console = Console()


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]![/yellow] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]i[/blue] {message}")


def setup_logging(level: str = "WARNING", rich_tracebacks: bool = True) -> None:
    """
    Route the ``aigate`` loggers through a Rich handler.

    Args:
        level: Log level name.
        rich_tracebacks: Render exception tracebacks with Rich.
    """
    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=rich_tracebacks,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    logger = logging.getLogger("aigate")
    for existing in list(logger.handlers):
        if isinstance(existing, RichHandler):
            logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(level.upper())
