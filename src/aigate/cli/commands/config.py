"""
aigate config - Configuration management commands.

Usage:
    aigate config show
    aigate config show retry
    aigate config set retry.max_attempts 5
    aigate config path
    aigate config validate
"""

import json
from typing import Annotated, Any

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from aigate.cli.output import print_success
from aigate.cli.state import get_config_file, load_cli_config
from aigate.config import (
    ConfigurationError,
    get_config_sources,
    get_nested_value,
    load_config,
    load_yaml_file,
    save_yaml_file,
    set_nested_value,
)
from aigate.storage.paths import find_project_config, get_global_config_path

app = typer.Typer(
    name="config",
    help="Configuration management.",
)

console = Console()


def _parse_value(value: str) -> Any:
    """
    Parse a command line value into a YAML scalar or JSON structure.

    Returns:
        Parsed value (bool, int, float, list, dict, or string).
    """
    if value.startswith("[") or value.startswith("{"):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            pass

    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError:
        return value
    if isinstance(parsed, (bool, int, float)) or parsed is None:
        return parsed
    return value


@app.command()
def show(
    ctx: typer.Context,
    section: Annotated[
        str | None,
        typer.Argument(
            help="Config section to show (e.g., 'retry', 'breaker.base_cooldown').",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output as JSON.",
        ),
    ] = False,
    sources: Annotated[
        bool,
        typer.Option(
            "--sources",
            help="Show configuration source files.",
        ),
    ] = False,
) -> None:
    """Show the effective configuration."""
    if sources:
        table = Table(title="Configuration Sources")
        table.add_column("Source", style="cyan")
        table.add_column("Path", style="green")
        table.add_column("Status")

        config_sources: dict[str, Any] = dict(get_config_sources())
        config_sources["file"] = get_config_file(ctx)
        for source_name, source_path in config_sources.items():
            if source_path:
                table.add_row(source_name, str(source_path), "[green]loaded[/green]")
            else:
                table.add_row(source_name, "-", "[dim]not found[/dim]")

        console.print(table)
        return

    config = load_cli_config(ctx)
    config_dict: Any = config.model_dump(mode="json")

    if section:
        config_dict = get_nested_value(config_dict, section)
        if config_dict is None:
            console.print(f"[red]Section '{section}' not found in configuration.[/red]")
            raise typer.Exit(1)

    if json_output:
        console.print_json(json.dumps(config_dict, default=str))
        return

    output = yaml.safe_dump(
        config_dict,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )
    if section:
        console.print(Panel(Syntax(output, "yaml", theme="monokai"), title=f"[cyan]{section}[/cyan]"))
    else:
        console.print(Syntax(output, "yaml", theme="monokai"))


@app.command("set")
def set_value(
    key: Annotated[
        str,
        typer.Argument(
            help="Configuration key (e.g., 'retry.max_attempts').",
        ),
    ],
    value: Annotated[
        str,
        typer.Argument(
            help="Value to set.",
        ),
    ],
    scope: Annotated[
        str,
        typer.Option(
            "--scope",
            "-s",
            help="Config scope: global or project.",
        ),
    ] = "global",
) -> None:
    """Set a configuration value."""
    if scope == "global":
        config_path = get_global_config_path()
    elif scope == "project":
        config_path = find_project_config()
        if not config_path:
            console.print("[red]No project configuration found (.aigate/config.yaml).[/red]")
            raise typer.Exit(1)
    else:
        console.print(f"[red]Invalid scope: {scope}. Use 'global' or 'project'.[/red]")
        raise typer.Exit(1)

    try:
        config_dict = load_yaml_file(config_path)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    parsed_value = _parse_value(value)
    config_dict = set_nested_value(config_dict, key, parsed_value)

    try:
        save_yaml_file(config_path, config_dict)
    except ConfigurationError as e:
        console.print(f"[red]Failed to save configuration: {e}[/red]")
        raise typer.Exit(1)

    print_success(f"Set {key} = {parsed_value!r} in {scope} config")
    console.print(f"[dim]File: {config_path}[/dim]")


@app.command()
def path() -> None:
    """Show where configuration files are read from."""
    console.print(f"Global:  {get_global_config_path()}")
    project = find_project_config()
    console.print(f"Project: {project if project else '[dim]not found[/dim]'}")


@app.command()
def validate(ctx: typer.Context) -> None:
    """Validate the merged configuration."""
    try:
        config = load_config(config_file=get_config_file(ctx))
    except ConfigurationError as e:
        console.print(f"[red]✗ Configuration is invalid:[/red] {e}")
        raise typer.Exit(1)

    console.print("[green]✓ Configuration is valid.[/green]")
    console.print(f"[dim]{len(config.providers)} provider(s) configured[/dim]")
