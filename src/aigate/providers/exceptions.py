"""
Router exceptions for aigate.

Defines the typed outcomes every public router call resolves with, plus the
classification used by the circuit breaker and the retry controller.
"""

import asyncio
from datetime import datetime
from enum import Enum

import httpx


class FailureType(Enum):
    """Classification of dispatch failures for breaker and retry decisions."""

    VALIDATION = "validation"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    CIRCUIT_OPEN = "circuit_open"
    QUEUE_FULL = "queue_full"
    CANCELLED = "cancelled"
    DEFERRED = "deferred"
    RETRY_EXHAUSTED = "retry_exhausted"
    UNKNOWN = "unknown"


class RouterError(Exception):
    """Base exception for every typed router outcome."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        request_id: str | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.request_id = request_id


class ValidationError(RouterError):
    """Malformed request. Never retried."""

    pass


class RequestTimeoutError(RouterError, TimeoutError):
    """The request or a single provider attempt ran out of time."""

    pass


class NetworkError(RouterError):
    """Connection-level failure reaching the provider."""

    pass


class ProviderError(RouterError):
    """Provider answered with an error status (or failed in an unknown way)."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status: int | None = None,
        retry_after: float | None = None,
        request_id: str | None = None,
    ):
        super().__init__(message, provider, request_id)
        self.status = status
        self.retry_after = retry_after


class CircuitOpenError(RouterError):
    """The provider's breaker is open; the call failed fast."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        open_until: datetime | None = None,
        request_id: str | None = None,
    ):
        super().__init__(message, provider, request_id)
        self.open_until = open_until


class QueueFullError(RouterError):
    """The request queue is at capacity."""

    pass


class RequestCancelledError(RouterError):
    """The request was cancelled or evicted before it completed."""

    pass


class RetryExhaustedError(RouterError):
    """Every allowed attempt failed with a retryable error."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        attempts: int = 0,
        request_id: str | None = None,
    ):
        super().__init__(message, provider, request_id)
        self.attempts = attempts


class RequestDeferredError(RouterError):
    """The request was persisted for replay instead of being dispatched."""

    def __init__(
        self,
        message: str,
        sync_id: str,
        reason: str,
        request_id: str | None = None,
    ):
        super().__init__(message, None, request_id)
        self.sync_id = sync_id
        self.reason = reason


def classify_error(error: BaseException) -> FailureType:
    """
    Classify an exception into a failure type.

    Args:
        error: The exception to classify.

    Returns:
        The failure type classification.
    """
    if isinstance(error, ProviderError):
        status = error.status
        if status == 429:
            return FailureType.RATE_LIMIT
        if status is not None and 500 <= status < 600:
            return FailureType.SERVER_ERROR
        if status is not None and 400 <= status < 500:
            return FailureType.CLIENT_ERROR
        return FailureType.UNKNOWN
    elif isinstance(error, ValidationError):
        return FailureType.VALIDATION
    elif isinstance(error, NetworkError):
        return FailureType.NETWORK_ERROR
    elif isinstance(error, CircuitOpenError):
        return FailureType.CIRCUIT_OPEN
    elif isinstance(error, QueueFullError):
        return FailureType.QUEUE_FULL
    elif isinstance(error, RequestCancelledError):
        return FailureType.CANCELLED
    elif isinstance(error, RequestDeferredError):
        return FailureType.DEFERRED
    elif isinstance(error, RetryExhaustedError):
        return FailureType.RETRY_EXHAUSTED

    # Transport exceptions that escaped an adapter untranslated
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return FailureType.TIMEOUT
    if isinstance(error, httpx.HTTPStatusError):
        return classify_error(
            ProviderError(str(error), status=error.response.status_code)
        )
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return FailureType.NETWORK_ERROR

    return FailureType.UNKNOWN


_TRANSIENT = frozenset(
    {
        FailureType.TIMEOUT,
        FailureType.NETWORK_ERROR,
        FailureType.RATE_LIMIT,
        FailureType.SERVER_ERROR,
    }
)


def is_retryable(failure_type: FailureType) -> bool:
    """
    Determine if a failure type should be retried.

    Args:
        failure_type: The classified failure type.

    Returns:
        True for timeouts, connection errors, 429 and 5xx.
    """
    return failure_type in _TRANSIENT


def counts_as_breaker_failure(failure_type: FailureType) -> bool:
    """
    Determine if a failure type moves the provider's breaker.

    Validation and non-429 4xx responses say nothing about provider health.

    Args:
        failure_type: The classified failure type.

    Returns:
        True if the breaker should record a failure.
    """
    return failure_type in _TRANSIENT


def is_terminal(error: BaseException) -> bool:
    """
    Whether a replayed request's outcome is final.

    Args:
        error: The exception a replay attempt ended with.

    Returns:
        True when retrying later cannot change the outcome.
    """
    failure_type = classify_error(error)
    return failure_type in {
        FailureType.VALIDATION,
        FailureType.CLIENT_ERROR,
        FailureType.UNKNOWN,
    }
