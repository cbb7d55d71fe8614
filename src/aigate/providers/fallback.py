"""
Fallback chain for aigate.

Walks the ordered providers when a request carries no provider hint and
tracks which ones failed during the current request.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from aigate.providers.exceptions import (
    CircuitOpenError,
    FailureType,
    RetryExhaustedError,
    classify_error,
)

logger = logging.getLogger(__name__)


@dataclass
class FallbackAttempt:
    """Record of a fallback attempt."""

    provider: str
    error: Exception
    failure_type: FailureType


@dataclass
class FallbackChain:
    """
    Handles provider fallback for one request.

    Only provider-level outcomes (open breaker, exhausted retries) move the
    request to the next provider. Anything else says something about the
    request itself and ends the chain.
    """

    providers: list[str]
    current_index: int = 0
    failed_providers: set[str] = field(default_factory=set)
    attempts: list[FallbackAttempt] = field(default_factory=list)

    def should_fallback(self, error: Exception) -> bool:
        """
        Determine if we should try the next provider.

        Args:
            error: The exception the last provider ended with.

        Returns:
            True if the error is provider-level and providers remain.
        """
        if not isinstance(error, (CircuitOpenError, RetryExhaustedError)):
            logger.debug(f"Not falling back for {classify_error(error).value} error")
            return False
        return self.has_more_providers

    def get_next_provider(self, skip: Callable[[str], bool] | None = None) -> str | None:
        """
        Get the next provider in the chain.

        Args:
            skip: Predicate for providers to pass over (e.g. open breakers).

        Returns:
            The next provider name, or None if the chain is exhausted.
        """
        while self.current_index < len(self.providers):
            provider = self.providers[self.current_index]
            self.current_index += 1

            if provider in self.failed_providers:
                continue
            if skip is not None and skip(provider):
                logger.debug(f"Skipping provider {provider}")
                continue
            return provider

        return None

    def mark_failed(self, provider: str, error: Exception) -> None:
        """
        Mark provider as failed for this request.

        Args:
            provider: The provider that failed.
            error: The exception that caused the failure.
        """
        self.failed_providers.add(provider)
        failure_type = classify_error(error)
        self.attempts.append(
            FallbackAttempt(provider=provider, error=error, failure_type=failure_type)
        )
        logger.warning(f"Provider {provider} failed with {failure_type.value}: {error}")

    def get_attempt_summary(self) -> str:
        """
        Get a human-readable summary of fallback attempts.

        Returns:
            Summary string describing what providers were tried.
        """
        if not self.attempts:
            return "No fallback attempts"

        lines = []
        for attempt in self.attempts:
            lines.append(f"  - {attempt.provider}: {attempt.failure_type.value} ({attempt.error})")

        return "Fallback attempts:\n" + "\n".join(lines)

    @property
    def has_more_providers(self) -> bool:
        """Check if there are more providers to try."""
        return self.current_index < len(self.providers)

    @property
    def last_error(self) -> Exception | None:
        return self.attempts[-1].error if self.attempts else None
