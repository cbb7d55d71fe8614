"""Provider adapter protocol definition."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from aigate.providers.exceptions import RequestCancelledError
from aigate.providers.models import ProviderResponse

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation signal threaded through every suspension point.

    The router creates one token per dispatch. Queue waits, rate-limit waits,
    retry delays and adapter calls all observe it. Transports that can abort
    an in-flight call register a callback with ``add_callback``.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation and fire registered abort callbacks."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cancellation callback failed: {e}")

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register an abort callback.

        Args:
            callback: Called once when the token is cancelled. Called
                immediately if the token is already cancelled.

        Returns:
            A function that unregisters the callback.
        """
        if self._event.is_set():
            callback()
            return lambda: None

        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def raise_if_cancelled(self) -> None:
        """Raise RequestCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise RequestCancelledError(f"Request {self.reason or 'cancelled'}")

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds unless cancelled first.

        Raises:
            RequestCancelledError: If the token is cancelled during the sleep.
        """
        self.raise_if_cancelled()
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def guard(self, awaitable):
        """Await ``awaitable``, abandoning it if the token is cancelled.

        Returns:
            The awaitable's result.

        Raises:
            RequestCancelledError: If the token fires first.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        remove = self.add_callback(task.cancel)
        try:
            return await task
        except asyncio.CancelledError:
            if self.cancelled:
                raise RequestCancelledError(f"Request {self.reason or 'cancelled'}") from None
            raise
        finally:
            remove()


class ProviderAdapter(ABC):
    """Abstract base class for provider adapters.

    Each vendor or transport implements this capability to give the router
    a uniform ``call(payload, signal)`` entry point. The router is
    polymorphic over this interface, never over concrete vendor types.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The provider name this adapter serves."""
        ...

    @property
    def supports_cancellation(self) -> bool:
        """Whether ``call`` aborts the underlying request when signalled."""
        return False

    @abstractmethod
    async def call(self, payload: bytes, signal: CancellationToken) -> ProviderResponse:
        """Send a payload to the provider.

        Args:
            payload: Opaque request bytes.
            signal: Cancellation token for this dispatch.

        Returns:
            The provider's response.

        Raises:
            RequestTimeoutError: The call timed out.
            NetworkError: The provider could not be reached.
            ProviderError: The provider answered with an error status.
            ValidationError: The payload cannot be sent to this provider.
            RequestCancelledError: The signal fired and the call was aborted.
        """
        ...

    async def aclose(self) -> None:
        """Release transport resources."""
        return None
