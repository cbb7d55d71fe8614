"""
Pytest configuration and fixtures for aigate tests.
"""

import asyncio
import os
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
from typer.testing import CliRunner

from aigate.providers.models import ProviderResponse
from aigate.providers.protocol import CancellationToken, ProviderAdapter
from aigate.providers.registry import ProviderRegistry, ProviderSpec
from aigate.telemetry import RecordingTelemetrySink


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAdapter(ProviderAdapter):
    """Scripted provider adapter.

    Each call pops the next scripted outcome: an exception is raised, a
    ProviderResponse is returned. Once the script runs out every call
    echoes the payload back.
    """

    def __init__(self, name: str, outcomes=None, delay: float = 0.0):
        self._name = name
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.calls: list[bytes] = []
        self.gate: asyncio.Event | None = None
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def supports_cancellation(self) -> bool:
        return True

    async def call(self, payload: bytes, signal: CancellationToken) -> ProviderResponse:
        self.calls.append(payload)
        if self.gate is not None:
            await signal.guard(self.gate.wait())
        if self.delay:
            await signal.sleep(self.delay)

        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return ProviderResponse(payload=b"echo:" + payload)

    async def aclose(self) -> None:
        self.closed = True


def make_registry(*adapters: FakeAdapter, **spec_overrides) -> ProviderRegistry:
    """Registry with one spec per fake adapter, ordered as given."""
    registry = ProviderRegistry()
    for index, adapter in enumerate(adapters):
        spec = ProviderSpec(
            name=adapter.name,
            priority=(index + 1) * 10,
            **spec_overrides,
        )
        registry.register(spec, adapter)
    return registry


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def aigate_home(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Point AIGATE_HOME at a temporary directory and isolate from the cwd."""
    home = temp_dir / "home" / ".aigate"
    home.mkdir(parents=True)
    workdir = temp_dir / "work"
    workdir.mkdir()

    monkeypatch.setenv("AIGATE_HOME", str(home))
    monkeypatch.chdir(workdir)
    for key in list(os.environ):
        if key.startswith("AIGATE_") and key != "AIGATE_HOME":
            monkeypatch.delenv(key, raising=False)

    yield home


@pytest.fixture
def clock() -> FakeClock:
    """Provide a manually advanced clock."""
    return FakeClock()


@pytest.fixture
def sink() -> RecordingTelemetrySink:
    """Provide an in-memory telemetry sink."""
    return RecordingTelemetrySink()


@pytest.fixture
def sample_config() -> dict:
    """Provide a sample configuration dictionary."""
    return {
        "requests": {"default_timeout": 20.0, "default_priority": "normal"},
        "providers": [
            {"name": "primary", "kind": "litellm", "model": "openai/gpt-4o-mini", "priority": 10},
            {
                "name": "backup",
                "kind": "http",
                "endpoint": "https://llm.internal.example/v1/complete",
                "priority": 20,
                "requests_per_minute": 120,
            },
        ],
        "retry": {"max_attempts": 4, "base_delay": 0.1, "max_delay": 2.0, "jitter": 0.0},
        "breaker": {"failure_threshold": 3, "base_cooldown": 5.0, "max_cooldown": 40.0},
    }


@pytest.fixture
def fake_adapter():
    """Factory for scripted adapters: ``fake_adapter("openai", [error, response])``."""
    return FakeAdapter


@pytest.fixture
def registry_factory():
    """Factory building a registry from fake adapters."""
    return make_registry
