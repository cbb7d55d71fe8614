"""
aigate resilience layer.

Circuit breakers, retry/backoff, rate limiting, response caching and
bounded priority queuing with single-flight coalescing.
"""

from aigate.resilience.breaker import BreakerTable, CircuitBreaker
from aigate.resilience.cache import ResponseCache
from aigate.resilience.queue import Flight, RequestQueue, SingleFlight
from aigate.resilience.rate_limit import ProviderRateLimiter, RateLimitExceeded, TokenBucket
from aigate.resilience.retry import RetryController, RetryPolicy, RetrySchedule

__all__ = [
    # Breaker
    "CircuitBreaker",
    "BreakerTable",
    # Retry
    "RetryPolicy",
    "RetrySchedule",
    "RetryController",
    # Rate limiting
    "ProviderRateLimiter",
    "TokenBucket",
    "RateLimitExceeded",
    # Cache
    "ResponseCache",
    # Queue
    "RequestQueue",
    "SingleFlight",
    "Flight",
]
