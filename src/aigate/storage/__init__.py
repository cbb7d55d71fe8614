"""Storage utilities for aigate."""

from aigate.storage.paths import (
    ensure_directory,
    expand_path,
    find_project_config,
    get_aigate_home,
    get_global_config_path,
    get_sync_queue_path,
    get_telemetry_log_path,
)

__all__ = [
    "ensure_directory",
    "expand_path",
    "find_project_config",
    "get_aigate_home",
    "get_global_config_path",
    "get_sync_queue_path",
    "get_telemetry_log_path",
]
