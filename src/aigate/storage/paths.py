"""
Path utilities for aigate.

Provides consistent path resolution for configuration, the durable sync
queue, and telemetry logs.
"""

import os
from pathlib import Path


def get_aigate_home() -> Path:
    """
    Get the aigate home directory.

    Resolution order:
    1. AIGATE_HOME environment variable
    2. Default: ~/.aigate

    Returns:
        Path to the aigate home directory.
    """
    env_home = os.environ.get("AIGATE_HOME")
    if env_home:
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".aigate"


def get_global_config_path() -> Path:
    """
    Get the path to the global configuration file.

    Returns:
        Path to ~/.aigate/config.yaml
    """
    return get_aigate_home() / "config.yaml"


def get_sync_queue_path() -> Path:
    """
    Get the default durable sync queue path.

    Returns:
        Path to ~/.aigate/sync_queue.jsonl
    """
    return get_aigate_home() / "sync_queue.jsonl"


def get_telemetry_log_path() -> Path:
    """
    Get the default telemetry log path.

    Returns:
        Path to ~/.aigate/telemetry.jsonl
    """
    return get_aigate_home() / "telemetry.jsonl"


def find_project_config(start_path: Path | None = None) -> Path | None:
    """
    Find the project configuration file by traversing up the directory tree.

    Looks for .aigate/config.yaml starting from the given path
    (or current directory) and moving up to the root.

    Args:
        start_path: Starting directory to search from. Defaults to cwd.

    Returns:
        Path to the project config if found, None otherwise.
    """
    if start_path is None:
        start_path = Path.cwd()
    else:
        start_path = Path(start_path).resolve()

    current = start_path
    while current != current.parent:
        project_config = current / ".aigate" / "config.yaml"
        if project_config.exists():
            return project_config
        current = current.parent

    # Check root as well
    project_config = current / ".aigate" / "config.yaml"
    if project_config.exists():
        return project_config

    return None


def expand_path(path: str | Path) -> Path:
    """
    Expand a path string, handling ~ and environment variables.

    Args:
        path: Path string or Path object.

    Returns:
        Expanded and resolved Path.
    """
    if isinstance(path, str):
        path = os.path.expandvars(path)
        path = os.path.expanduser(path)
    return Path(path).resolve()


def ensure_directory(path: Path, mode: int = 0o755) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path.
        mode: Permission mode for created directories.

    Returns:
        The path (for chaining).
    """
    path.mkdir(parents=True, exist_ok=True, mode=mode)
    return path
