"""Per-provider rate limiting for aigate."""

import asyncio
import logging
import time
from collections.abc import Callable

from aigate.providers.protocol import CancellationToken

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    """Raised by the non-blocking path when a provider has no tokens left."""

    def __init__(self, provider: str, retry_after: float):
        """Initialize exception.

        Args:
            provider: Provider that is out of tokens
            retry_after: Seconds until a token is available
        """
        self.provider = provider
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded for {provider}, retry after {retry_after:.2f}s")


class TokenBucket:
    """Token bucket for one provider.

    - The bucket holds up to ``capacity`` tokens (burst)
    - Tokens refill continuously at ``requests_per_minute / 60`` per second
    - Each dispatch consumes one token
    """

    def __init__(
        self,
        requests_per_minute: float,
        capacity: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be > 0")
        self.rate = requests_per_minute / 60.0
        self.capacity = float(capacity) if capacity is not None else max(1.0, self.rate)
        self._clock = clock
        self._tokens = self.capacity
        self._last_refill = clock()
        self.lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._last_refill = now

    @property
    def tokens(self) -> float:
        self._refill()
        return self._tokens

    def take(self, cost: float = 1.0) -> float:
        """
        Consume ``cost`` tokens if available.

        Returns:
            0.0 on success, otherwise the seconds until enough tokens exist.
        """
        self._refill()
        if self._tokens >= cost:
            self._tokens -= cost
            return 0.0
        return (cost - self._tokens) / self.rate

    def reset(self) -> None:
        self._tokens = self.capacity
        self._last_refill = self._clock()


class ProviderRateLimiter:
    """Token buckets keyed by provider name.

    Providers without a configured limit are never throttled.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}

    def set_limit(
        self,
        provider: str,
        requests_per_minute: float | None,
        burst: float | None = None,
    ) -> None:
        """Set the rate limit for a provider (None removes it)."""
        if requests_per_minute is None:
            self._buckets.pop(provider, None)
            return
        self._buckets[provider] = TokenBucket(requests_per_minute, burst, self._clock)
        logger.info(f"Set rate limit for {provider}: {requests_per_minute}/min")

    def try_acquire(self, provider: str, cost: float = 1.0) -> None:
        """Take a token without waiting.

        Raises:
            RateLimitExceeded: If the provider has no tokens left
        """
        bucket = self._buckets.get(provider)
        if bucket is None:
            return
        wait = bucket.take(cost)
        if wait > 0:
            raise RateLimitExceeded(provider, wait)

    async def acquire(
        self,
        provider: str,
        signal: CancellationToken | None = None,
        cost: float = 1.0,
    ) -> None:
        """Wait for a token. Waiters are served in arrival order.

        Args:
            provider: Provider to take a token from
            signal: Cancellation token; the wait aborts when it fires
            cost: Tokens to consume

        Raises:
            RequestCancelledError: If the signal fires while waiting
        """
        bucket = self._buckets.get(provider)
        if bucket is None:
            return

        if signal is not None:
            await signal.guard(bucket.lock.acquire())
        else:
            await bucket.lock.acquire()
        try:
            while True:
                wait = bucket.take(cost)
                if wait <= 0:
                    return
                logger.debug(f"Rate limited on {provider}, waiting {wait:.2f}s")
                if signal is not None:
                    await signal.sleep(wait)
                else:
                    await asyncio.sleep(wait)
        finally:
            bucket.lock.release()

    def get_status(self, provider: str) -> dict[str, float] | None:
        """Current tokens and limits for a provider, or None if unlimited."""
        bucket = self._buckets.get(provider)
        if bucket is None:
            return None
        return {
            "tokens": bucket.tokens,
            "capacity": bucket.capacity,
            "requests_per_minute": bucket.rate * 60.0,
        }

    def reset(self, provider: str) -> None:
        """Refill a provider's bucket."""
        bucket = self._buckets.get(provider)
        if bucket is not None:
            bucket.reset()
            logger.info(f"Reset rate limit for {provider}")
