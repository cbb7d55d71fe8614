"""
Retry and backoff for aigate.

Retries transient provider failures (timeouts, network errors, 429, 5xx)
with capped exponential backoff and jitter, re-checking the provider's
circuit breaker before every attempt.
"""

import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from aigate.providers.exceptions import (
    CircuitOpenError,
    ProviderError,
    RetryExhaustedError,
    is_retryable,
)
from aigate.providers.protocol import CancellationToken
from aigate.resilience.breaker import CircuitBreaker
from aigate.telemetry import NullTelemetrySink, TelemetryEventType, TelemetrySink

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff configuration."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 30.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < self.base_delay:
            raise ValueError("delays must satisfy 0 <= base_delay <= max_delay")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be between 0 and 1")

    @classmethod
    def from_config(cls, config: Any) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            jitter=config.jitter,
        )

    def raw_delay(self, retry_index: int, rng: random.Random | None = None) -> float:
        """
        Delay before retry ``retry_index`` (0-based), before smoothing.

        ``min(max_delay, base * 2**n) * (1 ± jitter)``, clamped to ``max_delay``.
        """
        delay = min(self.max_delay, self.base_delay * (2**retry_index))
        if self.jitter:
            spread = (rng or random).uniform(-self.jitter, self.jitter)
            delay *= 1.0 + spread
        return max(0.0, min(self.max_delay, delay))


class RetrySchedule:
    """Delays for one request. Never decreases from one retry to the next."""

    def __init__(self, policy: RetryPolicy, rng: random.Random | None = None):
        self.policy = policy
        self._rng = rng
        self._index = 0
        self._last = 0.0

    def next_delay(self, retry_after: float | None = None) -> float:
        """
        Delay before the next retry.

        Args:
            retry_after: Provider-requested wait, honoured up to ``max_delay``.
        """
        delay = self.policy.raw_delay(self._index, self._rng)
        if retry_after is not None:
            delay = max(delay, min(retry_after, self.policy.max_delay))
        delay = max(delay, self._last)
        self._index += 1
        self._last = delay
        return delay


class RetryController:
    """Runs provider attempts under a retry policy."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        telemetry: TelemetrySink | None = None,
        rng: random.Random | None = None,
    ):
        self.policy = policy or RetryPolicy()
        self._telemetry = telemetry or NullTelemetrySink()
        self._rng = rng

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        breaker: CircuitBreaker,
        signal: CancellationToken,
        request_id: str | None = None,
        before_attempt: Callable[[], Awaitable[None]] | None = None,
        on_retry: Callable[[int, float], None] | None = None,
    ) -> tuple[T, int]:
        """
        Run ``operation`` until it succeeds or retries run out.

        Args:
            operation: One provider attempt.
            breaker: Breaker of the provider being called.
            signal: Cancellation token for the request.
            request_id: For error reporting and telemetry.
            before_attempt: Awaited before each attempt, after the
                breaker check and before the probe slot is taken (rate limiting).
            on_retry: Called with (next attempt number, delay) when a retry
                is scheduled.

        Returns:
            The operation's result and the number of attempts made.

        Raises:
            CircuitOpenError: The breaker was (or became) open.
            RetryExhaustedError: Every attempt failed with a retryable error.
            RouterError: A non-retryable failure, unchanged.
        """
        provider = breaker.provider
        schedule = RetrySchedule(self.policy, self._rng)
        last_error: Exception | None = None

        for attempt in range(self.policy.max_attempts):
            if last_error is not None:
                retry_after = getattr(last_error, "retry_after", None)
                delay = schedule.next_delay(retry_after)
                logger.info(
                    f"Retrying {provider} in {delay:.2f}s"
                    f" (attempt {attempt + 1}/{self.policy.max_attempts}): {last_error}"
                )
                self._telemetry.emit(
                    TelemetryEventType.RETRY_SCHEDULED,
                    provider=provider,
                    request_id=request_id,
                    attempt=attempt + 1,
                    delay=delay,
                    error=str(last_error),
                )
                if on_retry is not None:
                    on_retry(attempt + 1, delay)
                await signal.sleep(delay)

            signal.raise_if_cancelled()
            try:
                breaker.check()
                # Rate-limit wait happens before the probe slot is taken.
                if before_attempt is not None:
                    await before_attempt()
                probe = breaker.acquire()
            except CircuitOpenError as e:
                e.request_id = request_id
                raise

            try:
                result = await operation()
            except Exception as e:
                failure_type = breaker.record_failure(e, probe)
                if not is_retryable(failure_type):
                    raise
                if breaker.is_open and attempt + 1 < self.policy.max_attempts:
                    error = breaker.open_error()
                    error.request_id = request_id
                    logger.info(f"Not retrying {provider}: circuit opened after {e}")
                    raise error from e
                last_error = e
                continue
            except BaseException:
                breaker.release(probe)
                raise

            breaker.record_success(probe)
            return result, attempt + 1

        status = last_error.status if isinstance(last_error, ProviderError) else None
        raise RetryExhaustedError(
            f"Provider {provider} failed after {self.policy.max_attempts} attempts"
            + (f" (last status {status})" if status else "")
            + f": {last_error}",
            provider=provider,
            attempts=self.policy.max_attempts,
            request_id=request_id,
        ) from last_error
