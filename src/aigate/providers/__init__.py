"""
aigate Provider Layer.

Everything the routing core knows about providers:
- Request, result and health models
- Error taxonomy and failure classification
- Adapter capability (HTTP and LiteLLM variants)
- Provider registry and fallback chain
"""

from aigate.providers.exceptions import (
    CircuitOpenError,
    FailureType,
    NetworkError,
    ProviderError,
    QueueFullError,
    RequestCancelledError,
    RequestDeferredError,
    RequestTimeoutError,
    RetryExhaustedError,
    RouterError,
    ValidationError,
    classify_error,
    counts_as_breaker_failure,
    is_retryable,
    is_terminal,
)
from aigate.providers.fallback import FallbackAttempt, FallbackChain
from aigate.providers.fingerprint import ANY_PROVIDER, compute_fingerprint
from aigate.providers.models import (
    BreakerState,
    CacheEntry,
    PersistedSyncItem,
    Priority,
    ProviderHealth,
    ProviderResponse,
    QueuedJob,
    Request,
    RouterResult,
)
from aigate.providers.protocol import CancellationToken, ProviderAdapter
from aigate.providers.registry import ProviderRegistry, ProviderSpec, build_adapter

__all__ = [
    # Models
    "Request",
    "RouterResult",
    "ProviderResponse",
    "ProviderHealth",
    "BreakerState",
    "CacheEntry",
    "QueuedJob",
    "PersistedSyncItem",
    "Priority",
    # Exceptions
    "RouterError",
    "ValidationError",
    "RequestTimeoutError",
    "NetworkError",
    "ProviderError",
    "CircuitOpenError",
    "QueueFullError",
    "RequestCancelledError",
    "RetryExhaustedError",
    "RequestDeferredError",
    "FailureType",
    "classify_error",
    "is_retryable",
    "is_terminal",
    "counts_as_breaker_failure",
    # Adapters
    "ProviderAdapter",
    "CancellationToken",
    # Registry
    "ProviderRegistry",
    "ProviderSpec",
    "build_adapter",
    # Fallback
    "FallbackChain",
    "FallbackAttempt",
    # Fingerprint
    "ANY_PROVIDER",
    "compute_fingerprint",
]
