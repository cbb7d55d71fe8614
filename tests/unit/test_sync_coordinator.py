"""Unit tests for the sync coordinator."""

import asyncio

import pytest

from aigate.providers.exceptions import NetworkError, ProviderError, ValidationError
from aigate.providers.models import Priority, Request, RouterResult
from aigate.sync import JsonlSyncStore, MemorySyncStore, SyncCoordinator
from aigate.telemetry import TelemetryEventType


def _result(request: Request) -> RouterResult:
    return RouterResult(
        request_id=request.id,
        fingerprint=request.fingerprint,
        provider=request.provider,
        payload=b"ok",
    )


class Dispatcher:
    """Records replayed requests and returns scripted outcomes by payload."""

    def __init__(self, failures=None, delay: float = 0.0):
        self.failures = dict(failures or {})
        self.delay = delay
        self.seen: list[bytes] = []

    async def __call__(self, request: Request) -> RouterResult:
        self.seen.append(request.payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        error = self.failures.get(request.payload)
        if error is not None:
            raise error
        return _result(request)


class TestSyncCoordinator:
    """Tests for SyncCoordinator."""

    @pytest.fixture
    def coordinator(self, sink):
        return SyncCoordinator(MemorySyncStore(), telemetry=sink)

    @pytest.mark.asyncio
    async def test_persist(self, coordinator, sink):
        request = Request(payload=b"a", provider="openai")
        item = await coordinator.persist(request, "offline")

        assert await coordinator.count() == 1
        assert item.request.id == request.id
        [event] = sink.of_type(TelemetryEventType.REQUEST_DEFERRED)
        assert event["reason"] == "offline"
        assert event["sync_id"] == item.id

    @pytest.mark.asyncio
    async def test_pending_in_priority_then_fifo_order(self, coordinator):
        for payload, priority in [(b"n1", Priority.NORMAL), (b"l1", Priority.LOW), (b"h1", Priority.HIGH), (b"n2", Priority.NORMAL)]:
            await coordinator.persist(Request(payload=payload, priority=priority), "offline")

        pending = await coordinator.pending()
        assert [item.request.to_request().payload for item in pending] == [b"h1", b"n1", b"n2", b"l1"]

    @pytest.mark.asyncio
    async def test_replay_success_empties_store(self, coordinator, sink):
        for payload in (b"a", b"b", b"c"):
            await coordinator.persist(Request(payload=payload), "offline")
        dispatch = Dispatcher()

        summary = await coordinator.replay(dispatch)

        assert dispatch.seen == [b"a", b"b", b"c"]
        assert summary.succeeded == 3
        assert summary.removed == 3
        assert summary.remaining == 0
        assert await coordinator.count() == 0
        assert len(sink.of_type(TelemetryEventType.REPLAY_ITEM)) == 3
        assert sink.of_type(TelemetryEventType.REPLAY_COMPLETED)[0]["succeeded"] == 3

    @pytest.mark.asyncio
    async def test_retryable_failure_pauses_group(self, coordinator):
        for payload in (b"a", b"b", b"c"):
            await coordinator.persist(Request(payload=payload, provider="openai"), "offline")
        await coordinator.persist(Request(payload=b"z", provider="anthropic"), "offline")
        dispatch = Dispatcher(failures={b"b": NetworkError("still down")})

        summary = await coordinator.replay(dispatch)

        assert b"c" not in dispatch.seen
        assert b"z" in dispatch.seen
        assert (summary.succeeded, summary.kept, summary.skipped) == (2, 1, 1)

        pending = await coordinator.pending()
        by_payload = {item.request.to_request().payload: item for item in pending}
        assert set(by_payload) == {b"b", b"c"}
        assert by_payload[b"b"].attempt == 1
        assert by_payload[b"c"].attempt == 0

    @pytest.mark.asyncio
    async def test_route_groups_unhinted_items_with_provider(self, coordinator):
        await coordinator.persist(Request(payload=b"a", provider="openai"), "offline")
        await coordinator.persist(Request(payload=b"b"), "offline")
        dispatch = Dispatcher(failures={b"a": NetworkError("still down")})

        summary = await coordinator.replay(dispatch, lambda provider: provider or "openai")

        assert dispatch.seen == [b"a"]
        assert (summary.kept, summary.skipped) == (1, 1)
        assert await coordinator.count() == 2

    @pytest.mark.asyncio
    async def test_unhinted_items_form_own_group_without_route(self, coordinator):
        await coordinator.persist(Request(payload=b"a", provider="openai"), "offline")
        await coordinator.persist(Request(payload=b"b"), "offline")
        dispatch = Dispatcher(failures={b"a": NetworkError("still down")})

        summary = await coordinator.replay(dispatch)

        assert sorted(dispatch.seen) == [b"a", b"b"]
        assert (summary.succeeded, summary.kept) == (1, 1)

    @pytest.mark.asyncio
    async def test_terminal_failure_is_removed(self, coordinator):
        await coordinator.persist(Request(payload=b"bad"), "offline")
        await coordinator.persist(Request(payload=b"good"), "offline")
        outcomes = []
        coordinator.on_replayed = lambda item, outcome: outcomes.append(outcome)
        dispatch = Dispatcher(failures={b"bad": ProviderError("rejected", status=400)})

        summary = await coordinator.replay(dispatch)

        assert (summary.failed, summary.succeeded) == (1, 1)
        assert await coordinator.count() == 0
        assert isinstance(outcomes[0], ProviderError)
        assert isinstance(outcomes[1], RouterResult)

    @pytest.mark.asyncio
    async def test_validation_failure_is_terminal(self, coordinator):
        await coordinator.persist(Request(payload=b"bad"), "offline")
        summary = await coordinator.replay(Dispatcher(failures={b"bad": ValidationError("nope")}))
        assert summary.failed == 1
        assert await coordinator.count() == 0

    @pytest.mark.asyncio
    async def test_concurrent_replays_share_one_round(self, coordinator):
        for payload in (b"a", b"b"):
            await coordinator.persist(Request(payload=payload), "offline")
        dispatch = Dispatcher(delay=0.01)

        first, second = await asyncio.gather(coordinator.replay(dispatch), coordinator.replay(dispatch))

        assert first is second
        assert dispatch.seen == [b"a", b"b"]

    @pytest.mark.asyncio
    async def test_empty_replay(self, coordinator):
        summary = await coordinator.replay(Dispatcher())
        assert summary.removed == 0
        assert not coordinator.is_replaying

    @pytest.mark.asyncio
    async def test_cancel_replay_keeps_items(self, coordinator):
        await coordinator.persist(Request(payload=b"slow"), "offline")
        task = asyncio.create_task(coordinator.replay(Dispatcher(delay=10)))
        await asyncio.sleep(0.01)

        await coordinator.cancel_replay()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert await coordinator.count() == 1

    @pytest.mark.asyncio
    async def test_jsonl_store_round_trip(self, temp_dir):
        path = temp_dir / "queue.jsonl"
        coordinator = SyncCoordinator(JsonlSyncStore(path, fsync=False))
        await coordinator.persist(Request(payload=b"durable", priority=Priority.HIGH), "all_providers_open")

        restarted = SyncCoordinator(JsonlSyncStore(path, fsync=False))
        dispatch = Dispatcher()
        summary = await restarted.replay(dispatch)

        assert dispatch.seen == [b"durable"]
        assert summary.succeeded == 1
        assert await restarted.count() == 0
