"""
Request queue and single-flight coalescing for aigate.

``RequestQueue`` bounds how many requests are admitted at once and hands out
per-provider dispatch slots in priority order. ``SingleFlight`` makes
concurrent duplicate requests share one dispatch.
"""

import asyncio
import bisect
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from aigate.providers.exceptions import QueueFullError, RequestCancelledError
from aigate.providers.models import Priority, QueuedJob, Request
from aigate.providers.protocol import CancellationToken
from aigate.telemetry import NullTelemetrySink, TelemetryEventType, TelemetrySink

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class _Waiter:
    job: QueuedJob
    future: asyncio.Future


class _Lane:
    """Dispatch slots for one provider."""

    def __init__(self, provider: str, max_concurrency: int):
        self.provider = provider
        self.max_concurrency = max_concurrency
        self.active = 0
        self.waiting: dict[Priority, list[_Waiter]] = {p: [] for p in Priority}

    def push(self, waiter: _Waiter) -> None:
        bisect.insort(self.waiting[waiter.job.priority], waiter, key=lambda w: w.job.seq)

    def discard(self, waiter: _Waiter) -> bool:
        bucket = self.waiting[waiter.job.priority]
        if waiter in bucket:
            bucket.remove(waiter)
            return True
        return False

    def pop_next(self) -> _Waiter | None:
        for priority in sorted(Priority, key=lambda p: p.rank):
            bucket = self.waiting[priority]
            while bucket:
                waiter = bucket.pop(0)
                if not waiter.future.done():
                    return waiter
        return None

    def find(self, job_id: str) -> _Waiter | None:
        for bucket in self.waiting.values():
            for waiter in bucket:
                if waiter.job.id == job_id:
                    return waiter
        return None

    @property
    def waiting_count(self) -> int:
        return sum(len(bucket) for bucket in self.waiting.values())


class RequestQueue:
    """Bounded, priority-ordered admission with per-provider concurrency limits.

    Capacity counts admitted jobs that have not finished, whether they are
    waiting for a slot or dispatching. Within a provider lane, higher
    priority is served first and equal priority is FIFO by admission order.
    """

    def __init__(
        self,
        capacity: int = 256,
        *,
        default_concurrency: int = 4,
        evict_low_for_high: bool = True,
        telemetry: TelemetrySink | None = None,
    ):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.default_concurrency = default_concurrency
        self.evict_low_for_high = evict_low_for_high
        self._telemetry = telemetry or NullTelemetrySink()

        self._lanes: dict[str, _Lane] = {}
        self._admitted: dict[str, QueuedJob] = {}
        self._seq = 0

    @classmethod
    def from_config(cls, config: Any, telemetry: TelemetrySink | None = None) -> "RequestQueue":
        return cls(
            capacity=config.capacity,
            default_concurrency=config.default_concurrency,
            evict_low_for_high=config.evict_low_for_high,
            telemetry=telemetry,
        )

    def configure_lane(self, provider: str, max_concurrency: int) -> None:
        """Set a provider's concurrency limit."""
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        lane = self._lane(provider)
        lane.max_concurrency = max_concurrency
        self._grant(lane)

    def _lane(self, provider: str) -> _Lane:
        lane = self._lanes.get(provider)
        if lane is None:
            lane = _Lane(provider, self.default_concurrency)
            self._lanes[provider] = lane
        return lane

    # -------------------------------------------------------------------------
    # Admission
    # -------------------------------------------------------------------------

    def admit(self, request: Request) -> QueuedJob:
        """
        Admit a request.

        Args:
            request: The request to admit.

        Returns:
            The queued job.

        Raises:
            QueueFullError: The queue is at capacity and nothing could be evicted.
        """
        if len(self._admitted) >= self.capacity:
            if not (request.priority == Priority.HIGH and self.evict_low_for_high and self._evict_low()):
                self._telemetry.emit(
                    TelemetryEventType.QUEUE_REJECTED,
                    request_id=request.id,
                    priority=request.priority.value,
                    capacity=self.capacity,
                )
                raise QueueFullError(
                    f"Queue full ({self.capacity} admitted), rejecting {request.priority.value}-priority request",
                    request_id=request.id,
                )

        self._seq += 1
        job = QueuedJob(request=request, seq=self._seq)
        self._admitted[job.id] = job
        return job

    def _evict_low(self) -> bool:
        """Fail the oldest waiting low-priority job. Returns True if one was evicted."""
        victim: tuple[_Lane, _Waiter] | None = None
        for lane in self._lanes.values():
            for waiter in lane.waiting[Priority.LOW]:
                if waiter.future.done():
                    continue
                if victim is None or waiter.job.seq < victim[1].job.seq:
                    victim = (lane, waiter)
                break

        if victim is None:
            return False

        lane, waiter = victim
        lane.discard(waiter)
        self._admitted.pop(waiter.job.id, None)
        waiter.future.set_exception(
            RequestCancelledError(
                "Evicted to admit a high-priority request",
                provider=lane.provider,
                request_id=waiter.job.id,
            )
        )
        logger.info(f"Evicted low-priority request {waiter.job.id} from lane {lane.provider}")
        self._telemetry.emit(
            TelemetryEventType.JOB_EVICTED,
            request_id=waiter.job.id,
            provider=lane.provider,
        )
        return True

    # -------------------------------------------------------------------------
    # Slots
    # -------------------------------------------------------------------------

    async def acquire(
        self,
        job: QueuedJob,
        provider: str,
        signal: CancellationToken | None = None,
    ) -> None:
        """
        Wait for a dispatch slot on a provider lane.

        Raises:
            RequestCancelledError: The job was removed, evicted or the signal fired.
        """
        lane = self._lane(provider)
        has_waiters = lane.waiting_count > 0
        if lane.active < lane.max_concurrency and not has_waiters:
            lane.active += 1
            job.provider = provider
            return

        waiter = _Waiter(job, asyncio.get_running_loop().create_future())
        lane.push(waiter)
        try:
            if signal is not None:
                await signal.guard(waiter.future)
            else:
                await waiter.future
        except BaseException:
            lane.discard(waiter)
            granted = (
                waiter.future.done()
                and not waiter.future.cancelled()
                and waiter.future.exception() is None
            )
            if granted:
                lane.active -= 1
                self._grant(lane)
            raise
        job.provider = provider

    def _grant(self, lane: _Lane) -> None:
        while lane.active < lane.max_concurrency:
            waiter = lane.pop_next()
            if waiter is None:
                return
            lane.active += 1
            waiter.future.set_result(None)

    def release(self, job: QueuedJob) -> None:
        """Give back the job's provider slot."""
        if job.provider is None:
            return
        lane = self._lane(job.provider)
        job.provider = None
        lane.active = max(0, lane.active - 1)
        self._grant(lane)

    def finish(self, job: QueuedJob) -> None:
        """Mark a job done, freeing its capacity. Idempotent."""
        self.release(job)
        self._admitted.pop(job.id, None)

    def remove(self, job_id: str) -> bool:
        """
        Withdraw a job that is still waiting for a slot.

        Its pending ``acquire`` fails with RequestCancelledError.

        Returns:
            True if a waiting job was withdrawn.
        """
        for lane in self._lanes.values():
            waiter = lane.find(job_id)
            if waiter is None or waiter.future.done():
                continue
            lane.discard(waiter)
            self._admitted.pop(job_id, None)
            waiter.future.set_exception(
                RequestCancelledError("Request cancelled", provider=lane.provider, request_id=job_id)
            )
            return True
        return False

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def is_waiting(self, job_id: str) -> bool:
        return any(lane.find(job_id) is not None for lane in self._lanes.values())

    def stats(self) -> dict[str, Any]:
        return {
            "admitted": len(self._admitted),
            "capacity": self.capacity,
            "lanes": {
                name: {
                    "active": lane.active,
                    "waiting": lane.waiting_count,
                    "max_concurrency": lane.max_concurrency,
                }
                for name, lane in self._lanes.items()
            },
        }

    def __len__(self) -> int:
        return len(self._admitted)


# =============================================================================
# Single-flight
# =============================================================================


@dataclass
class Flight:
    """One in-progress dispatch shared by every request with its fingerprint."""

    fingerprint: str
    leader: Request
    token: CancellationToken = field(default_factory=CancellationToken)
    task: asyncio.Task | None = None
    started_at: float = field(default_factory=time.monotonic)
    waiters: dict[str, asyncio.Future] = field(default_factory=dict)

    def attach(self, request_id: str) -> asyncio.Future:
        """Register a caller and return the future its outcome lands on."""
        future = asyncio.get_running_loop().create_future()
        self.waiters[request_id] = future
        return future

    def detach(self, request_id: str, error: BaseException | None = None) -> bool:
        """
        Remove a caller.

        Args:
            request_id: The caller to remove.
            error: Set on the caller's pending future. The future is
                cancelled instead when omitted.

        Returns:
            True if the caller was attached.
        """
        future = self.waiters.pop(request_id, None)
        if future is None:
            return False
        if not future.done():
            if error is not None:
                future.set_exception(error)
            else:
                future.cancel()
        return True

    def resolve(self, result: Any) -> None:
        for future in self.waiters.values():
            if not future.done():
                future.set_result(result)

    def fail(self, error: BaseException) -> None:
        for future in self.waiters.values():
            if not future.done():
                future.set_exception(error)

    @property
    def is_abandoned(self) -> bool:
        return not self.waiters


class SingleFlight:
    """Fingerprint to in-progress flight map."""

    def __init__(self) -> None:
        self._flights: dict[str, Flight] = {}

    def get(self, fingerprint: str) -> Flight | None:
        return self._flights.get(fingerprint)

    def start(self, leader: Request) -> Flight:
        """Open a flight for the leader's fingerprint."""
        if leader.fingerprint in self._flights:
            raise RuntimeError(f"Flight already in progress for {leader.fingerprint}")
        flight = Flight(fingerprint=leader.fingerprint, leader=leader)
        self._flights[flight.fingerprint] = flight
        return flight

    def finish(self, flight: Flight) -> None:
        """Close a flight if it is still the current one for its fingerprint."""
        if self._flights.get(flight.fingerprint) is flight:
            del self._flights[flight.fingerprint]

    def find_by_request(self, request_id: str) -> Flight | None:
        for flight in self._flights.values():
            if request_id in flight.waiters:
                return flight
        return None

    def flights(self) -> list[Flight]:
        return list(self._flights.values())

    def __len__(self) -> int:
        return len(self._flights)

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._flights