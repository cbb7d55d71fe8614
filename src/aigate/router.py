"""
Request router for aigate.

The router is the only public entry point. On submit it validates the
request, checks the response cache, coalesces duplicates onto one
in-flight dispatch, defers to the sync store when nothing is reachable,
admits the request to the bounded queue, and dispatches it through the
provider's breaker, rate limiter and retry controller. Every waiter that
shares a fingerprint receives the same outcome.
"""

import asyncio
import dataclasses
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

import httpx

from aigate.config.schema import Config
from aigate.providers.exceptions import (
    CircuitOpenError,
    FailureType,
    NetworkError,
    ProviderError,
    RequestCancelledError,
    RequestDeferredError,
    RequestTimeoutError,
    RetryExhaustedError,
    RouterError,
    ValidationError,
    classify_error,
)
from aigate.providers.fallback import FallbackChain
from aigate.providers.fingerprint import normalize_provider
from aigate.providers.models import (
    Priority,
    ProviderHealth,
    ProviderResponse,
    QueuedJob,
    Request,
    RouterResult,
)
from aigate.providers.protocol import CancellationToken, ProviderAdapter
from aigate.providers.registry import ProviderRegistry, ProviderSpec
from aigate.resilience.breaker import BreakerTable
from aigate.resilience.cache import ResponseCache
from aigate.resilience.queue import Flight, RequestQueue, SingleFlight
from aigate.resilience.rate_limit import ProviderRateLimiter
from aigate.resilience.retry import RetryController, RetryPolicy
from aigate.sync import JsonlSyncStore, MemorySyncStore, ReplaySummary, SyncCoordinator
from aigate.telemetry import (
    JsonlTelemetrySink,
    NullTelemetrySink,
    TelemetryEventType,
    TelemetrySink,
)

logger = logging.getLogger(__name__)

PROVIDER_TAG_PREFIX = "provider:"


def provider_tag(provider: str) -> str:
    """Cache tag carried by every entry a provider produced."""
    return f"{PROVIDER_TAG_PREFIX}{normalize_provider(provider)}"


class Router:
    """Resilient request router.

    The router:
    1. Serves repeated requests from the response cache
    2. Coalesces concurrent duplicates onto a single dispatch
    3. Bounds admitted work and orders it by priority per provider
    4. Fails fast on open breakers and retries transient failures
    5. Falls back across providers when no provider hint is given
    6. Defers requests durably while offline and replays them on reconnect
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        breakers: BreakerTable | None = None,
        cache: ResponseCache | None = None,
        queue: RequestQueue | None = None,
        retry: RetryController | None = None,
        rate_limiter: ProviderRateLimiter | None = None,
        sync: SyncCoordinator | None = None,
        telemetry: TelemetrySink | None = None,
        default_timeout: float = 60.0,
        default_priority: Priority = Priority.NORMAL,
        sweep_interval: float | None = None,
        defer_when_all_open: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the router.

        Args:
            registry: Providers and their adapters
            breakers: Per-provider circuit breakers
            cache: Response cache (None disables caching)
            queue: Bounded request queue
            retry: Retry controller
            rate_limiter: Per-provider token buckets
            sync: Sync coordinator (None disables deferral)
            telemetry: Event sink shared by every component
            default_timeout: Timeout for requests built with ``make_request``
            default_priority: Priority for requests built with ``make_request``
            sweep_interval: Seconds between expired-entry sweeps (None disables)
            defer_when_all_open: Defer when every candidate provider is OPEN
            clock: Monotonic time source
        """
        self.telemetry = telemetry or NullTelemetrySink()
        self.registry = registry
        self.breakers = (
            breakers if breakers is not None
            else BreakerTable(registry.names(), clock=clock, telemetry=self.telemetry)
        )
        self.cache = cache
        self.queue = queue if queue is not None else RequestQueue(telemetry=self.telemetry)
        self.retry = retry if retry is not None else RetryController(telemetry=self.telemetry)
        self.rate_limiter = rate_limiter if rate_limiter is not None else ProviderRateLimiter(clock=clock)
        self.sync = sync
        self.default_timeout = default_timeout
        self.default_priority = default_priority
        self.sweep_interval = sweep_interval
        self.defer_when_all_open = defer_when_all_open
        self._clock = clock

        self._flights = SingleFlight()
        self._tasks: set[asyncio.Task] = set()
        self._sweeper: asyncio.Task | None = None
        self._online = True
        self._running = False

        for spec in registry.ordered():
            self.breakers.get(spec.name)
            self.queue.configure_lane(spec.name, spec.max_concurrency)
            if spec.requests_per_minute:
                self.rate_limiter.set_limit(spec.name, spec.requests_per_minute)

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        adapters: dict[str, ProviderAdapter] | None = None,
        telemetry: TelemetrySink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "Router":
        """Build a router and all of its components from configuration.

        Args:
            config: Loaded configuration
            adapters: Adapters to use instead of building them, keyed by provider name
            telemetry: Sink to use instead of the configured one
            clock: Monotonic time source

        Returns:
            A router that has not been started yet
        """
        if telemetry is None:
            if config.telemetry.enable:
                telemetry = JsonlTelemetrySink.from_config(config.telemetry)
            else:
                telemetry = NullTelemetrySink()

        adapters = {normalize_provider(name): adapter for name, adapter in (adapters or {}).items()}
        registry = ProviderRegistry()
        for entry in config.providers:
            spec = ProviderSpec.from_entry(entry)
            registry.register(spec, adapters.get(spec.name))

        sync = None
        if config.sync.enable:
            if config.sync.backend == "jsonl":
                store = JsonlSyncStore.from_config(config.sync)
            else:
                store = MemorySyncStore()
            sync = SyncCoordinator(store, telemetry=telemetry)

        return cls(
            registry,
            breakers=BreakerTable.from_config(
                config.breaker, registry.names(), clock=clock, telemetry=telemetry
            ),
            cache=ResponseCache.from_config(config.cache, clock=clock) if config.cache.enable else None,
            queue=RequestQueue.from_config(config.queue, telemetry=telemetry),
            retry=RetryController(RetryPolicy.from_config(config.retry), telemetry=telemetry),
            rate_limiter=ProviderRateLimiter(clock=clock),
            sync=sync,
            telemetry=telemetry,
            default_timeout=config.requests.default_timeout,
            default_priority=Priority(config.requests.default_priority),
            sweep_interval=config.cache.sweep_interval if config.cache.enable else None,
            defer_when_all_open=config.sync.defer_when_all_open,
            clock=clock,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start background housekeeping."""
        if self._running:
            logger.warning("Router is already running")
            return

        self._running = True
        if self.cache is not None and self.sweep_interval:
            self._sweeper = asyncio.create_task(
                self._sweep_loop(self.cache, self.sweep_interval), name="aigate-cache-sweeper"
            )
        logger.info(f"Router started with {len(self.registry)} providers")

    async def stop(self) -> None:
        """Abort in-flight work, stop background tasks and close adapters."""
        self._running = False

        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None

        if self.sync is not None:
            await self.sync.cancel_replay()

        for flight in self._flights.flights():
            flight.token.cancel("router stopped")
            flight.fail(RequestCancelledError("Router stopped", request_id=flight.leader.id))

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        for adapter in self.registry.adapters():
            try:
                await adapter.aclose()
            except Exception as e:
                logger.error(f"Failed to close adapter for {adapter.name}: {e}")

        try:
            self.telemetry.close()
        except Exception as e:
            logger.warning(f"Failed to close telemetry sink: {e}")
        logger.info("Router stopped")

    async def __aenter__(self) -> "Router":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _sweep_loop(self, cache: ResponseCache, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                cache.sweep_expired()
            except Exception as e:
                logger.warning(f"Cache sweep failed: {e}")

    # =========================================================================
    # Submission
    # =========================================================================

    def make_request(
        self,
        payload: bytes,
        provider: str | None = None,
        priority: Priority | str | None = None,
        timeout: float | None = None,
    ) -> Request:
        """Build a request with the router's configured defaults."""
        return Request(
            payload=payload,
            provider=provider,
            priority=Priority(priority) if priority is not None else self.default_priority,
            timeout=timeout if timeout is not None else self.default_timeout,
        )

    def _validate(self, request: Request) -> None:
        if not isinstance(request.payload, bytes):
            raise ValidationError("Payload must be bytes", request_id=request.id)
        if not request.payload:
            raise ValidationError("Payload must not be empty", request_id=request.id)
        if not isinstance(request.priority, Priority):
            raise ValidationError(f"Unknown priority {request.priority!r}", request_id=request.id)
        if request.timeout is None or request.timeout <= 0:
            raise ValidationError("Timeout must be positive", request_id=request.id)

        if request.provider is not None:
            spec = self.registry.get(request.provider)
            if spec is None or not spec.enabled:
                raise ValidationError(
                    f"Unknown or disabled provider: {request.provider}",
                    provider=request.provider,
                    request_id=request.id,
                )
        elif not self.registry.ordered():
            raise ValidationError("No providers are configured", request_id=request.id)

    def _candidates(self, request: Request) -> list[str]:
        if request.provider is not None:
            return [normalize_provider(request.provider)]
        return [spec.name for spec in self.registry.ordered()]

    def _deferral_reason(self, request: Request) -> str | None:
        if self.sync is None:
            return None
        if not self._online:
            return "offline"
        if self.defer_when_all_open and self.breakers.all_open(self._candidates(request)):
            return "all_providers_open"
        return None

    def _cached_result(self, request: Request, started: float) -> RouterResult | None:
        if self.cache is None:
            return None

        entry = self.cache.get_entry(request.fingerprint)
        if entry is None:
            self.telemetry.emit(TelemetryEventType.CACHE_MISS, request_id=request.id)
            return None

        provider = next(
            (tag[len(PROVIDER_TAG_PREFIX) :] for tag in entry.tags if tag.startswith(PROVIDER_TAG_PREFIX)),
            None,
        )
        self.telemetry.emit(TelemetryEventType.CACHE_HIT, request_id=request.id, provider=provider)
        return RouterResult(
            request_id=request.id,
            fingerprint=request.fingerprint,
            provider=provider,
            payload=entry.result,
            cached=True,
            latency_ms=(self._clock() - started) * 1000,
        )

    async def submit(self, request: Request, *, allow_defer: bool = True) -> RouterResult:
        """Submit a request and wait for its outcome.

        Args:
            request: The request to route
            allow_defer: Persist the request for replay when nothing is reachable

        Returns:
            The provider result, possibly served from cache or shared with
            a concurrent duplicate

        Raises:
            ValidationError: The request is malformed
            QueueFullError: The queue is at capacity
            CircuitOpenError: Every candidate provider's breaker is open
            RetryExhaustedError: Transient failures outlasted the retry budget
            ProviderError: The provider rejected the request
            RequestTimeoutError: The request's timeout elapsed
            RequestCancelledError: The request was cancelled or evicted
            RequestDeferredError: The request was persisted for later replay
        """
        self._validate(request)
        started = self._clock()
        self.telemetry.emit(
            TelemetryEventType.REQUEST_SUBMITTED,
            request_id=request.id,
            fingerprint=request.fingerprint,
            provider=request.provider,
            priority=request.priority.value,
        )

        cached = self._cached_result(request, started)
        if cached is not None:
            return cached

        flight = self._flights.get(request.fingerprint)
        coalesced = flight is not None
        if flight is None:
            reason = self._deferral_reason(request) if allow_defer else None
            if reason is not None:
                item = await self.sync.persist(request, reason)
                raise RequestDeferredError(
                    f"Request {request.id} deferred for replay ({reason})",
                    sync_id=item.id,
                    reason=reason,
                    request_id=request.id,
                )

            job = self.queue.admit(request)
            flight = self._flights.start(request)
            flight.task = self._spawn(self._dispatch(flight, job), name=f"aigate-dispatch-{request.id}")
        else:
            logger.debug(f"Request {request.id} joined in-flight dispatch {flight.leader.id}")
            self.telemetry.emit(
                TelemetryEventType.REQUEST_COALESCED,
                request_id=request.id,
                leader_id=flight.leader.id,
            )

        future = flight.attach(request.id)
        try:
            result: RouterResult = await asyncio.wait_for(future, timeout=request.timeout)
        except RouterError:
            raise
        except asyncio.TimeoutError:
            raise RequestTimeoutError(
                f"Request {request.id} timed out after {request.timeout}s",
                provider=request.provider,
                request_id=request.id,
            ) from None
        finally:
            self._leave(flight, request.id)

        return dataclasses.replace(
            result,
            request_id=request.id,
            coalesced=coalesced,
            latency_ms=(self._clock() - started) * 1000,
        )

    def _leave(
        self,
        flight: Flight,
        request_id: str,
        error: BaseException | None = None,
    ) -> bool:
        """Detach a caller; abort the dispatch when the last one leaves."""
        if not flight.detach(request_id, error):
            return False
        if not flight.is_abandoned:
            return True

        self._flights.finish(flight)
        if flight.task is not None and not flight.task.done():
            logger.debug(f"Aborting abandoned dispatch {flight.leader.id}")
            self.queue.remove(flight.leader.id)
            flight.token.cancel("abandoned")
            flight.task.cancel()
        return True

    def cancel(self, request_id: str) -> bool:
        """Cancel a request from the caller's perspective.

        Withdraws the request's waiter. Other requests sharing the dispatch
        are unaffected; when none remain, the dispatch itself is aborted.

        Args:
            request_id: The request to cancel

        Returns:
            True if the request was pending
        """
        flight = self._flights.find_by_request(request_id)
        if flight is None:
            return False

        error = RequestCancelledError(f"Request {request_id} cancelled", request_id=request_id)
        cancelled = self._leave(flight, request_id, error)
        if cancelled:
            logger.info(f"Cancelled request {request_id}")
            self.telemetry.emit(TelemetryEventType.REQUEST_CANCELLED, request_id=request_id)
        return cancelled

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def _dispatch(self, flight: Flight, job: QueuedJob) -> None:
        request = flight.leader
        try:
            try:
                result = await self._run_chain(job, flight.token)
            finally:
                self.queue.finish(job)
        except asyncio.CancelledError:
            flight.fail(RequestCancelledError(f"Request {request.id} aborted", request_id=request.id))
            raise
        except Exception as e:
            if not isinstance(e, RouterError):
                e = ProviderError(f"Unexpected dispatch failure: {e}", request_id=request.id)
            logger.info(f"Request {request.id} failed: {e}")
            self.telemetry.emit(
                TelemetryEventType.REQUEST_FAILED,
                request_id=request.id,
                provider=e.provider,
                failure=classify_error(e).value,
                error=str(e),
            )
            flight.fail(e)
        else:
            self._store_result(result)
            self.telemetry.emit(
                TelemetryEventType.REQUEST_COMPLETED,
                request_id=request.id,
                provider=result.provider,
                attempts=result.attempts,
                waiters=len(flight.waiters),
            )
            flight.resolve(result)
        finally:
            self._flights.finish(flight)

    def _store_result(self, result: RouterResult) -> None:
        if self.cache is None:
            return
        try:
            tags = [provider_tag(result.provider)] if result.provider else []
            self.cache.set(result.fingerprint, result.payload, tags=tags)
        except Exception as e:
            logger.warning(f"Cache write failed for {result.fingerprint}: {e}")

    async def _run_chain(self, job: QueuedJob, token: CancellationToken) -> RouterResult:
        """Try candidate providers in order until one succeeds."""
        request = job.request
        candidates = self._candidates(request)
        chain = FallbackChain(candidates)
        skip = None if request.provider is not None else self._is_open

        while True:
            provider = chain.get_next_provider(skip)
            if provider is None:
                break

            try:
                response = await self._attempt_provider(job, provider, token)
            except (CircuitOpenError, RetryExhaustedError) as e:
                chain.mark_failed(provider, e)
                if chain.should_fallback(e):
                    self.telemetry.emit(
                        TelemetryEventType.PROVIDER_FALLBACK,
                        request_id=request.id,
                        provider=provider,
                        failure=classify_error(e).value,
                    )
                continue

            return RouterResult(
                request_id=request.id,
                fingerprint=request.fingerprint,
                provider=provider,
                payload=response.payload,
                attempts=job.attempt,
            )

        last_error = chain.last_error
        if last_error is None:
            raise CircuitOpenError(
                "No provider available: every breaker is open",
                request_id=request.id,
            )
        if len(chain.attempts) > 1:
            logger.warning(chain.get_attempt_summary())
        raise last_error

    def _is_open(self, provider: str) -> bool:
        return self.breakers.get(provider).is_open

    async def _attempt_provider(
        self,
        job: QueuedJob,
        provider: str,
        token: CancellationToken,
    ) -> ProviderResponse:
        """Run one provider: lane slot, then the retry loop."""
        request = job.request
        spec = self.registry.get(provider)
        adapter = self.registry.adapter(provider)
        breaker = self.breakers.get(provider)

        breaker.check()
        await self.queue.acquire(job, provider, token)
        try:

            async def operation() -> ProviderResponse:
                job.attempt += 1
                return await self._call_adapter(adapter, spec, request, token)

            def on_retry(attempt: int, delay: float) -> None:
                job.next_eligible_at = self._clock() + delay

            response, _ = await self.retry.run(
                operation,
                breaker=breaker,
                signal=token,
                request_id=request.id,
                before_attempt=lambda: self.rate_limiter.acquire(provider, token),
                on_retry=on_retry,
            )
            return response
        finally:
            self.queue.release(job)

    async def _call_adapter(
        self,
        adapter: ProviderAdapter,
        spec: ProviderSpec,
        request: Request,
        token: CancellationToken,
    ) -> ProviderResponse:
        """One adapter call, bounded by the provider's attempt timeout."""
        try:
            response = await asyncio.wait_for(
                adapter.call(request.payload, token), timeout=spec.attempt_timeout
            )
        except RouterError:
            raise
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise RequestTimeoutError(
                f"Attempt on {spec.name} timed out after {spec.attempt_timeout}s",
                provider=spec.name,
                request_id=request.id,
            ) from e
        except Exception as e:
            failure_type = classify_error(e)
            if failure_type == FailureType.NETWORK_ERROR:
                raise NetworkError(str(e), provider=spec.name, request_id=request.id) from e
            if failure_type == FailureType.TIMEOUT:
                raise RequestTimeoutError(str(e), provider=spec.name, request_id=request.id) from e
            status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            raise ProviderError(
                f"Adapter {spec.name} failed: {e}",
                provider=spec.name,
                status=status,
                request_id=request.id,
            ) from e

        if response.status >= 400:
            raise ProviderError(
                f"Provider {spec.name} returned status {response.status}",
                provider=spec.name,
                status=response.status,
                request_id=request.id,
            )
        return response

    # =========================================================================
    # Connectivity & replay
    # =========================================================================

    @property
    def is_online(self) -> bool:
        return self._online

    def on_connectivity_change(self, is_online: bool) -> asyncio.Task | None:
        """Record a connectivity signal.

        Going offline makes new submits defer. An online signal starts a
        replay of deferred requests.

        Args:
            is_online: Whether the network is reachable

        Returns:
            The replay task, if one was started
        """
        was_online = self._online
        self._online = is_online
        if was_online != is_online:
            logger.info(f"Connectivity changed: {'online' if is_online else 'offline'}")
            self.telemetry.emit(TelemetryEventType.CONNECTIVITY_CHANGED, online=is_online)

        if not is_online or self.sync is None:
            return None
        return self._spawn(self.replay_pending(), name="aigate-replay")

    async def replay_pending(self) -> ReplaySummary:
        """Replay deferred requests now. Joins a replay already in progress."""
        if self.sync is None:
            return ReplaySummary()
        return await self.sync.replay(self._replay_one, self._replay_route)

    async def _replay_one(self, request: Request) -> RouterResult:
        return await self.submit(request, allow_defer=False)

    def _replay_route(self, provider: str | None) -> str | None:
        # Unhinted items replay alongside the first provider they will try.
        if provider is not None:
            return normalize_provider(provider)
        ordered = self.registry.ordered()
        return ordered[0].name if ordered else None

    # =========================================================================
    # Introspection
    # =========================================================================

    def health(self) -> list[ProviderHealth]:
        """Breaker health for every registered provider."""
        return [self.breakers.get(name).snapshot() for name in self.registry.names()]

    def invalidate_provider(self, provider: str) -> int:
        """Drop every cached result a provider produced.

        Returns:
            Number of entries removed
        """
        if self.cache is None:
            return 0
        removed = self.cache.invalidate_by_prefix(provider_tag(provider))
        self.telemetry.emit(
            TelemetryEventType.CACHE_INVALIDATED,
            provider=normalize_provider(provider),
            removed=removed,
        )
        return removed

    @property
    def in_flight(self) -> int:
        """Number of distinct dispatches in progress."""
        return len(self._flights)
