"""Configuration for aigate."""

from aigate.config.loader import (
    ConfigurationError,
    apply_env_overrides,
    get_config_sources,
    load_config,
    load_yaml_file,
    save_yaml_file,
)
from aigate.config.merger import deep_merge, get_nested_value, merge_configs, set_nested_value
from aigate.config.schema import (
    BreakerConfig,
    CacheConfig,
    Config,
    LoggingConfig,
    ProviderEntry,
    QueueConfig,
    RequestsConfig,
    RetryConfig,
    SyncConfig,
    TelemetryConfig,
)

__all__ = [
    # Schema
    "Config",
    "RequestsConfig",
    "ProviderEntry",
    "BreakerConfig",
    "RetryConfig",
    "CacheConfig",
    "QueueConfig",
    "SyncConfig",
    "TelemetryConfig",
    "LoggingConfig",
    # Loading
    "ConfigurationError",
    "load_config",
    "load_yaml_file",
    "save_yaml_file",
    "apply_env_overrides",
    "get_config_sources",
    # Merging
    "deep_merge",
    "merge_configs",
    "get_nested_value",
    "set_nested_value",
]
