"""
Pydantic configuration schema for aigate.

One model per router component plus the root ``Config``.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from aigate.storage.paths import get_sync_queue_path, get_telemetry_log_path

# =============================================================================
# Requests
# =============================================================================


class RequestsConfig(BaseModel):
    """Defaults applied to submitted requests."""

    default_timeout: float = Field(default=60.0, gt=0)
    default_priority: Literal["high", "normal", "low"] = "normal"


# =============================================================================
# Providers
# =============================================================================


class ProviderEntry(BaseModel):
    """One configured provider."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    kind: Literal["litellm", "http"] = "litellm"
    model: str | None = None
    endpoint: str | None = None
    priority: int = 100
    max_concurrency: int = Field(default=4, ge=1, le=1024)
    requests_per_minute: float | None = Field(default=None, gt=0)
    attempt_timeout: float = Field(default=30.0, gt=0)
    headers: dict[str, str] = Field(default_factory=dict)
    api_key_env: str | None = None
    enabled: bool = True

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        name = value.strip().lower()
        if not name or name == "*":
            raise ValueError("provider name must be a non-empty identifier")
        return name

    @model_validator(mode="after")
    def check_kind_fields(self) -> "ProviderEntry":
        if self.kind == "http" and not self.endpoint:
            raise ValueError(f"provider '{self.name}': kind 'http' requires an endpoint")
        if self.kind == "litellm" and not self.model:
            raise ValueError(f"provider '{self.name}': kind 'litellm' requires a model")
        return self


# =============================================================================
# Resilience
# =============================================================================


class BreakerConfig(BaseModel):
    """Circuit breaker settings, shared by every provider."""

    failure_threshold: int = Field(default=5, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)
    base_cooldown: float = Field(default=30.0, gt=0)
    max_cooldown: float = Field(default=300.0, gt=0)

    @model_validator(mode="after")
    def check_cooldowns(self) -> "BreakerConfig":
        if self.max_cooldown < self.base_cooldown:
            raise ValueError("max_cooldown must be >= base_cooldown")
        return self


class RetryConfig(BaseModel):
    """Retry/backoff settings."""

    max_attempts: int = Field(default=3, ge=1, le=20)
    base_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    jitter: float = Field(default=0.1, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_delays(self) -> "RetryConfig":
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        return self


class CacheConfig(BaseModel):
    """Response cache settings."""

    enable: bool = True
    default_ttl: float = Field(default=300.0, ge=0)
    max_entries: int = Field(default=1024, ge=1)
    sweep_interval: float | None = Field(default=60.0, gt=0)


class QueueConfig(BaseModel):
    """Request queue settings."""

    capacity: int = Field(default=256, ge=1)
    default_concurrency: int = Field(default=4, ge=1)
    evict_low_for_high: bool = True


class SyncConfig(BaseModel):
    """Offline deferral and replay settings."""

    enable: bool = True
    backend: Literal["jsonl", "memory"] = "jsonl"
    path: str = Field(default_factory=lambda: str(get_sync_queue_path()))
    compact_threshold: int = Field(default=100, ge=1)
    fsync: bool = True
    defer_when_all_open: bool = True


# =============================================================================
# Ambient
# =============================================================================


class TelemetryConfig(BaseModel):
    """Telemetry log settings."""

    enable: bool = False
    path: str = Field(default_factory=lambda: str(get_telemetry_log_path()))
    rotation: Literal["daily", "weekly", "size"] = "daily"
    max_size_mb: int = 50
    retention_days: int = Field(default=30, ge=1, le=365)
    compress_old: bool = True
    buffer_size: int = Field(default=50, ge=1)
    flush_interval_seconds: int = 5


class LoggingConfig(BaseModel):
    """Console logging settings used by the CLI."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    rich_tracebacks: bool = True

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value


# =============================================================================
# Root Configuration Model
# =============================================================================


class Config(BaseModel):
    """
    Root configuration model for aigate.

    Loaded from YAML files and environment variables, merged in order of
    priority by ``aigate.config.loader.load_config``.
    """

    model_config = ConfigDict(extra="forbid")

    requests: RequestsConfig = Field(default_factory=RequestsConfig)
    providers: list[ProviderEntry] = Field(default_factory=list)
    breaker: BreakerConfig = Field(default_factory=BreakerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("providers")
    @classmethod
    def unique_provider_names(cls, providers: list[ProviderEntry]) -> list[ProviderEntry]:
        seen: set[str] = set()
        for entry in providers:
            if entry.name in seen:
                raise ValueError(f"duplicate provider name '{entry.name}'")
            seen.add(entry.name)
        return providers

    def get_provider(self, name: str) -> ProviderEntry | None:
        """Look up a provider entry by name."""
        wanted = name.strip().lower()
        for entry in self.providers:
            if entry.name == wanted:
                return entry
        return None
