"""Unit tests for the request queue and single-flight map."""

import asyncio

import pytest

from aigate.providers.exceptions import QueueFullError, RequestCancelledError
from aigate.providers.models import Priority, Request
from aigate.providers.protocol import CancellationToken
from aigate.resilience.queue import RequestQueue, SingleFlight
from aigate.telemetry import TelemetryEventType


def _request(priority: Priority = Priority.NORMAL, payload: bytes = b"x") -> Request:
    return Request(payload=payload, priority=priority)


class TestAdmission:
    """Tests for RequestQueue.admit."""

    def test_admits_until_capacity(self):
        queue = RequestQueue(capacity=2)
        first = queue.admit(_request())
        second = queue.admit(_request())
        assert (first.seq, second.seq) == (1, 2)
        assert len(queue) == 2

        with pytest.raises(QueueFullError):
            queue.admit(_request())

    def test_finish_frees_capacity(self):
        queue = RequestQueue(capacity=1)
        job = queue.admit(_request())
        queue.finish(job)
        queue.finish(job)
        assert len(queue) == 0
        queue.admit(_request())

    def test_rejection_emits_telemetry(self, sink):
        queue = RequestQueue(capacity=1, telemetry=sink)
        queue.admit(_request())
        with pytest.raises(QueueFullError):
            queue.admit(_request(Priority.LOW))
        [event] = sink.of_type(TelemetryEventType.QUEUE_REJECTED)
        assert event["priority"] == "low"

    def test_high_priority_rejected_when_nothing_evictable(self):
        queue = RequestQueue(capacity=1)
        queue.admit(_request(Priority.LOW))
        with pytest.raises(QueueFullError):
            queue.admit(_request(Priority.HIGH))

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            RequestQueue(capacity=0)


class TestSlots:
    """Tests for per-provider dispatch slots."""

    @pytest.mark.asyncio
    async def test_acquire_within_limit(self):
        queue = RequestQueue(capacity=10)
        queue.configure_lane("p", 2)
        first, second = queue.admit(_request()), queue.admit(_request())

        await queue.acquire(first, "p")
        await queue.acquire(second, "p")
        assert first.provider == "p"
        assert queue.stats()["lanes"]["p"]["active"] == 2

    @pytest.mark.asyncio
    async def test_priority_order_then_fifo(self):
        queue = RequestQueue(capacity=10)
        queue.configure_lane("p", 1)
        holder = queue.admit(_request())
        await queue.acquire(holder, "p")

        jobs = [
            queue.admit(_request(Priority.LOW, b"low")),
            queue.admit(_request(Priority.NORMAL, b"normal-1")),
            queue.admit(_request(Priority.HIGH, b"high")),
            queue.admit(_request(Priority.NORMAL, b"normal-2")),
        ]
        order = []

        async def run(job):
            await queue.acquire(job, "p")
            order.append(job.request.payload)
            queue.finish(job)

        tasks = [asyncio.create_task(run(job)) for job in jobs]
        await asyncio.sleep(0)
        assert queue.stats()["lanes"]["p"]["waiting"] == 4

        queue.finish(holder)
        await asyncio.gather(*tasks)
        assert order == [b"high", b"normal-1", b"normal-2", b"low"]

    @pytest.mark.asyncio
    async def test_high_priority_evicts_oldest_waiting_low(self, sink):
        queue = RequestQueue(capacity=3, telemetry=sink)
        queue.configure_lane("p", 1)
        holder = queue.admit(_request())
        await queue.acquire(holder, "p")

        old_low = queue.admit(_request(Priority.LOW))
        new_low = queue.admit(_request(Priority.LOW))
        old_task = asyncio.create_task(queue.acquire(old_low, "p"))
        new_task = asyncio.create_task(queue.acquire(new_low, "p"))
        await asyncio.sleep(0)

        high = queue.admit(_request(Priority.HIGH))

        with pytest.raises(RequestCancelledError):
            await old_task
        assert not new_task.done()
        assert len(queue) == 3
        assert sink.of_type(TelemetryEventType.JOB_EVICTED)[0]["request_id"] == old_low.id

        queue.finish(holder)
        high_task = asyncio.create_task(queue.acquire(high, "p"))
        await asyncio.sleep(0)
        assert new_task.done()
        queue.finish(new_low)
        await high_task

    @pytest.mark.asyncio
    async def test_eviction_disabled(self):
        queue = RequestQueue(capacity=2, evict_low_for_high=False)
        queue.configure_lane("p", 1)
        holder = queue.admit(_request())
        await queue.acquire(holder, "p")
        low = queue.admit(_request(Priority.LOW))
        task = asyncio.create_task(queue.acquire(low, "p"))
        await asyncio.sleep(0)

        with pytest.raises(QueueFullError):
            queue.admit(_request(Priority.HIGH))

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not queue.is_waiting(low.id)

    @pytest.mark.asyncio
    async def test_remove_waiting_job(self):
        queue = RequestQueue(capacity=5)
        queue.configure_lane("p", 1)
        holder = queue.admit(_request())
        await queue.acquire(holder, "p")
        waiting = queue.admit(_request())
        task = asyncio.create_task(queue.acquire(waiting, "p"))
        await asyncio.sleep(0)

        assert queue.is_waiting(waiting.id)
        assert queue.remove(waiting.id) is True
        with pytest.raises(RequestCancelledError):
            await task
        assert queue.remove(waiting.id) is False
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_signal_cancels_wait_and_frees_position(self):
        queue = RequestQueue(capacity=5)
        queue.configure_lane("p", 1)
        holder = queue.admit(_request())
        await queue.acquire(holder, "p")

        token = CancellationToken()
        waiting = queue.admit(_request())
        task = asyncio.create_task(queue.acquire(waiting, "p", token))
        await asyncio.sleep(0)
        token.cancel()

        with pytest.raises(RequestCancelledError):
            await task
        assert not queue.is_waiting(waiting.id)

        queue.finish(holder)
        assert queue.stats()["lanes"]["p"]["active"] == 0

    @pytest.mark.asyncio
    async def test_raising_concurrency_grants_waiters(self):
        queue = RequestQueue(capacity=5)
        queue.configure_lane("p", 1)
        holder = queue.admit(_request())
        await queue.acquire(holder, "p")
        waiting = queue.admit(_request())
        task = asyncio.create_task(queue.acquire(waiting, "p"))
        await asyncio.sleep(0)

        queue.configure_lane("p", 2)
        await asyncio.wait_for(task, timeout=1)
        assert queue.stats()["lanes"]["p"]["active"] == 2


class TestSingleFlight:
    """Tests for SingleFlight and Flight."""

    @pytest.mark.asyncio
    async def test_waiters_share_result(self):
        flights = SingleFlight()
        leader = _request()
        flight = flights.start(leader)
        first = flight.attach("a")
        second = flight.attach("b")

        assert flights.get(leader.fingerprint) is flight
        assert flights.find_by_request("b") is flight

        flight.resolve("done")
        assert await first == "done"
        assert await second == "done"

    @pytest.mark.asyncio
    async def test_duplicate_start_rejected(self):
        flights = SingleFlight()
        flights.start(_request())
        with pytest.raises(RuntimeError):
            flights.start(_request())

    @pytest.mark.asyncio
    async def test_detach_with_error(self):
        flight = SingleFlight().start(_request())
        future = flight.attach("a")
        flight.attach("b")

        assert flight.detach("a", RequestCancelledError("gone")) is True
        assert flight.detach("a") is False
        with pytest.raises(RequestCancelledError):
            await future
        assert not flight.is_abandoned

        flight.detach("b")
        assert flight.is_abandoned

    @pytest.mark.asyncio
    async def test_finish_only_removes_current_flight(self):
        flights = SingleFlight()
        old = flights.start(_request())
        flights.finish(old)
        new = flights.start(_request())
        flights.finish(old)
        assert flights.get(new.fingerprint) is new
        assert len(flights) == 1
