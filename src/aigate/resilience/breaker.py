"""
Circuit breaker for aigate.

One breaker per provider tracks health and gates dispatch:

    CLOSED --(threshold failures in window)--> OPEN
    OPEN --(cooldown elapsed, checked on read)--> HALF_OPEN
    HALF_OPEN --(probe success)--> CLOSED
    HALF_OPEN --(probe failure)--> OPEN, cooldown doubled up to max

All state changes happen synchronously, so callers never observe a
half-applied transition.
"""

import logging
import time
from collections import deque
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Any

from aigate.providers.exceptions import (
    CircuitOpenError,
    FailureType,
    classify_error,
    counts_as_breaker_failure,
)
from aigate.providers.models import BreakerState, ProviderHealth
from aigate.telemetry import NullTelemetrySink, TelemetryEventType, TelemetrySink

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class CircuitBreaker:
    """Health state machine for a single provider."""

    def __init__(
        self,
        provider: str,
        *,
        failure_threshold: int = 5,
        window_seconds: float = 60.0,
        base_cooldown: float = 30.0,
        max_cooldown: float = 300.0,
        clock: Clock = time.monotonic,
        telemetry: TelemetrySink | None = None,
    ):
        """
        Initialize the breaker.

        Args:
            provider: Provider name.
            failure_threshold: Consecutive classified failures that open the breaker.
            window_seconds: Failures older than this no longer count.
            base_cooldown: First OPEN period in seconds.
            max_cooldown: Upper bound for the doubled cooldown.
            clock: Monotonic time source.
            telemetry: Sink for transition events.
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if base_cooldown <= 0 or max_cooldown < base_cooldown:
            raise ValueError("cooldowns must satisfy 0 < base_cooldown <= max_cooldown")

        self.provider = provider
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.base_cooldown = base_cooldown
        self.max_cooldown = max_cooldown
        self._clock = clock
        self._telemetry = telemetry or NullTelemetrySink()

        self._state = BreakerState.CLOSED
        self._failures: deque[float] = deque()
        self._last_failure_at: float | None = None
        self._open_until: float | None = None
        self._cooldown = base_cooldown
        self._probe_in_flight = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> BreakerState:
        """Current state. OPEN turns into HALF_OPEN here once the cooldown passes."""
        if (
            self._state == BreakerState.OPEN
            and self._open_until is not None
            and self._clock() >= self._open_until
        ):
            self._transition(BreakerState.HALF_OPEN)
        return self._state

    @property
    def is_open(self) -> bool:
        """True while dispatch is blocked for everyone."""
        return self.state == BreakerState.OPEN

    @property
    def consecutive_failures(self) -> int:
        self._prune(self._clock())
        return len(self._failures)

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._failures and self._failures[0] < cutoff:
            self._failures.popleft()

    def open_error(self) -> CircuitOpenError:
        """CircuitOpenError carrying the current cooldown deadline."""
        open_until = None
        if self._open_until is not None:
            remaining = max(0.0, self._open_until - self._clock())
            open_until = datetime.now() + timedelta(seconds=remaining)
        return CircuitOpenError(
            f"Circuit open for provider {self.provider}",
            provider=self.provider,
            open_until=open_until,
        )

    def _transition(self, new_state: BreakerState) -> None:
        old_state = self._state
        if old_state == new_state:
            return

        now = self._clock()
        if new_state == BreakerState.OPEN:
            self._open_until = now + self._cooldown
        elif new_state == BreakerState.CLOSED:
            self._open_until = None
            self._failures.clear()
            self._cooldown = self.base_cooldown
        self._probe_in_flight = False
        self._state = new_state

        log = logger.warning if new_state == BreakerState.OPEN else logger.info
        log(
            f"Breaker for {self.provider}: {old_state.value} -> {new_state.value}"
            f" (cooldown {self._cooldown:.1f}s)"
        )
        self._telemetry.emit(
            TelemetryEventType.BREAKER_TRANSITION,
            provider=self.provider,
            from_state=old_state.value,
            to_state=new_state.value,
            cooldown=self._cooldown,
            consecutive_failures=len(self._failures),
        )

    # -------------------------------------------------------------------------
    # Gate
    # -------------------------------------------------------------------------

    def acquire(self) -> bool:
        """
        Ask permission to dispatch.

        Returns:
            True if the caller holds the single HALF_OPEN probe slot.

        Raises:
            CircuitOpenError: While OPEN, or HALF_OPEN with the probe taken.
        """
        state = self.state
        if state == BreakerState.CLOSED:
            return False
        if state == BreakerState.HALF_OPEN and not self._probe_in_flight:
            self._probe_in_flight = True
            logger.debug(f"Probe dispatch admitted for {self.provider}")
            return True
        raise self.open_error()

    def check(self) -> None:
        """Raise CircuitOpenError without taking the probe slot."""
        state = self.state
        if state == BreakerState.OPEN or (
            state == BreakerState.HALF_OPEN and self._probe_in_flight
        ):
            raise self.open_error()

    def release(self, probe: bool) -> None:
        """Give back the probe slot without reporting an outcome."""
        if probe and self._state == BreakerState.HALF_OPEN:
            self._probe_in_flight = False

    # -------------------------------------------------------------------------
    # Outcomes
    # -------------------------------------------------------------------------

    def record_success(self, probe: bool = False) -> None:
        """Report a successful dispatch."""
        state = self.state
        if state == BreakerState.HALF_OPEN:
            if probe:
                self._transition(BreakerState.CLOSED)
        elif state == BreakerState.CLOSED:
            self._failures.clear()

    def record_failure(self, error: BaseException, probe: bool = False) -> FailureType:
        """
        Report a failed dispatch.

        Only classified failures (timeouts, network errors, 429, 5xx) move
        the state machine. A probe that ends any other way just frees the
        probe slot.

        Args:
            error: The exception the attempt ended with.
            probe: Whether the attempt held the probe slot.

        Returns:
            The failure classification.
        """
        failure_type = classify_error(error)
        if not counts_as_breaker_failure(failure_type):
            self.release(probe)
            return failure_type

        now = self._clock()
        self._last_failure_at = now
        state = self.state

        if state == BreakerState.HALF_OPEN:
            if probe:
                self._cooldown = min(self.max_cooldown, self._cooldown * 2)
                self._transition(BreakerState.OPEN)
        elif state == BreakerState.CLOSED:
            self._prune(now)
            self._failures.append(now)
            logger.debug(
                f"Breaker for {self.provider}: failure {len(self._failures)}"
                f"/{self.failure_threshold} ({failure_type.value})"
            )
            if len(self._failures) >= self.failure_threshold:
                self._transition(BreakerState.OPEN)

        return failure_type

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        self._transition(BreakerState.CLOSED)
        self._failures.clear()
        self._cooldown = self.base_cooldown
        self._last_failure_at = None

    def snapshot(self) -> ProviderHealth:
        """Point-in-time health for this provider."""
        state = self.state
        return ProviderHealth(
            provider=self.provider,
            state=state,
            consecutive_failures=self.consecutive_failures,
            last_failure_at=self._last_failure_at,
            open_until=self._open_until if state == BreakerState.OPEN else None,
            cooldown=self._cooldown,
        )


class BreakerTable:
    """One circuit breaker per provider, sharing settings."""

    def __init__(
        self,
        providers: Iterable[str] = (),
        *,
        clock: Clock = time.monotonic,
        telemetry: TelemetrySink | None = None,
        **settings: Any,
    ):
        """
        Initialize the table.

        Args:
            providers: Provider names to create breakers for up front.
            clock: Monotonic time source shared by every breaker.
            telemetry: Sink for transition events.
            **settings: CircuitBreaker keyword arguments.
        """
        self._clock = clock
        self._telemetry = telemetry
        self._settings = settings
        self._breakers: dict[str, CircuitBreaker] = {}
        for name in providers:
            self.get(name)

    @classmethod
    def from_config(
        cls,
        config: Any,
        providers: Iterable[str] = (),
        *,
        clock: Clock = time.monotonic,
        telemetry: TelemetrySink | None = None,
    ) -> "BreakerTable":
        """Create a table from a BreakerConfig."""
        return cls(
            providers,
            clock=clock,
            telemetry=telemetry,
            failure_threshold=config.failure_threshold,
            window_seconds=config.window_seconds,
            base_cooldown=config.base_cooldown,
            max_cooldown=config.max_cooldown,
        )

    def get(self, provider: str) -> CircuitBreaker:
        """Breaker for a provider, created on first use."""
        breaker = self._breakers.get(provider)
        if breaker is None:
            breaker = CircuitBreaker(
                provider, clock=self._clock, telemetry=self._telemetry, **self._settings
            )
            self._breakers[provider] = breaker
        return breaker

    def all_open(self, providers: Iterable[str] | None = None) -> bool:
        """
        Whether every given provider is OPEN.

        Args:
            providers: Names to check. Defaults to every known breaker.

        Returns:
            False for an empty set.
        """
        names = list(self._breakers) if providers is None else list(providers)
        return bool(names) and all(self.get(name).is_open for name in names)
