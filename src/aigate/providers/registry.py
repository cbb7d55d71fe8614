"""
Provider registry for aigate.

Holds the configured providers, their dispatch order and limits, and the
adapter that serves each one.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from aigate.providers.adapters import HttpProviderAdapter, LiteLLMAdapter
from aigate.providers.fingerprint import normalize_provider
from aigate.providers.protocol import ProviderAdapter

if TYPE_CHECKING:
    from aigate.config.schema import ProviderEntry

logger = logging.getLogger(__name__)

ADAPTER_KINDS = ("litellm", "http")


@dataclass
class ProviderSpec:
    """Static description of one provider."""

    name: str
    kind: str = "litellm"
    model: str | None = None
    endpoint: str | None = None
    priority: int = 100
    max_concurrency: int = 4
    requests_per_minute: float | None = None
    attempt_timeout: float = 30.0
    headers: dict[str, str] = field(default_factory=dict)
    api_key_env: str | None = None
    enabled: bool = True

    def __post_init__(self) -> None:
        self.name = normalize_provider(self.name)
        if not self.name or self.name == "*":
            raise ValueError("Provider name must be a non-empty identifier")
        if self.kind not in ADAPTER_KINDS:
            raise ValueError(f"Unknown adapter kind '{self.kind}' for provider {self.name}")
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1 for provider {self.name}")

    @classmethod
    def from_entry(cls, entry: "ProviderEntry") -> "ProviderSpec":
        """Build a spec from a config entry."""
        return cls(
            name=entry.name,
            kind=entry.kind,
            model=entry.model,
            endpoint=entry.endpoint,
            priority=entry.priority,
            max_concurrency=entry.max_concurrency,
            requests_per_minute=entry.requests_per_minute,
            attempt_timeout=entry.attempt_timeout,
            headers=dict(entry.headers),
            api_key_env=entry.api_key_env,
            enabled=entry.enabled,
        )


def build_adapter(spec: ProviderSpec) -> ProviderAdapter:
    """
    Create the adapter a spec describes.

    Args:
        spec: Provider description.

    Returns:
        A ready-to-use adapter.

    Raises:
        ValueError: If the spec lacks the field its adapter kind needs.
    """
    if spec.kind == "http":
        if not spec.endpoint:
            raise ValueError(f"Provider {spec.name} of kind 'http' needs an endpoint")
        return HttpProviderAdapter(
            spec.name,
            spec.endpoint,
            headers=spec.headers,
            api_key_env=spec.api_key_env,
            timeout=spec.attempt_timeout,
        )

    if not spec.model:
        raise ValueError(f"Provider {spec.name} of kind 'litellm' needs a model")
    return LiteLLMAdapter(
        spec.name,
        spec.model,
        timeout=spec.attempt_timeout,
        api_base=spec.endpoint,
    )


class ProviderRegistry:
    """Ordered set of providers and their adapters."""

    def __init__(self) -> None:
        self._specs: dict[str, ProviderSpec] = {}
        self._adapters: dict[str, ProviderAdapter] = {}

    def register(
        self,
        spec: ProviderSpec,
        adapter: ProviderAdapter | None = None,
    ) -> None:
        """
        Register a provider.

        Args:
            spec: Provider description.
            adapter: Adapter to use. Built from the spec when omitted.

        Raises:
            ValueError: If a provider with the same name is already registered.
        """
        if spec.name in self._specs:
            raise ValueError(f"Provider already registered: {spec.name}")

        self._specs[spec.name] = spec
        self._adapters[spec.name] = adapter if adapter is not None else build_adapter(spec)
        logger.debug(f"Registered provider {spec.name} ({spec.kind}, priority {spec.priority})")

    def get(self, name: str) -> ProviderSpec | None:
        """Look up a provider by (normalized) name."""
        return self._specs.get(normalize_provider(name))

    def adapter(self, name: str) -> ProviderAdapter:
        """Return the adapter for a registered provider."""
        return self._adapters[normalize_provider(name)]

    def ordered(self) -> list[ProviderSpec]:
        """Enabled providers in dispatch order (ascending priority, then registration)."""
        enabled = [spec for spec in self._specs.values() if spec.enabled]
        return sorted(enabled, key=lambda spec: spec.priority)

    def names(self) -> list[str]:
        """Names of every registered provider."""
        return list(self._specs)

    def adapters(self) -> Iterator[ProviderAdapter]:
        return iter(self._adapters.values())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_provider(name) in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    @classmethod
    def from_config(cls, entries: list["ProviderEntry"]) -> "ProviderRegistry":
        """
        Build a registry from configured provider entries.

        Args:
            entries: The ``providers`` section of the config.

        Returns:
            Registry with one adapter per entry.
        """
        registry = cls()
        for entry in entries:
            registry.register(ProviderSpec.from_entry(entry))
        return registry
