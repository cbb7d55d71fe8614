"""
Background sync coordinator for aigate.

Persists requests that cannot be dispatched right now and replays them
through the router once connectivity returns.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from aigate.providers.exceptions import classify_error, is_terminal
from aigate.providers.models import PersistedSyncItem, Request, RouterResult
from aigate.sync.store import SyncStore
from aigate.telemetry import NullTelemetrySink, TelemetryEventType, TelemetrySink

logger = logging.getLogger(__name__)

T = TypeVar("T")

Dispatch = Callable[[Request], Awaitable[RouterResult]]
Route = Callable[[str | None], str | None]
ReplayCallback = Callable[[PersistedSyncItem, "RouterResult | BaseException"], None]


@dataclass
class ReplaySummary:
    """Outcome counts for one replay round."""

    succeeded: int = 0
    failed: int = 0
    kept: int = 0
    skipped: int = 0

    @property
    def removed(self) -> int:
        """Items that reached a terminal outcome and left the store."""
        return self.succeeded + self.failed

    @property
    def remaining(self) -> int:
        return self.kept + self.skipped


class SyncCoordinator:
    """Durable deferral and ordered replay of requests.

    Replay order is priority first, then FIFO by enqueue time. Items are
    grouped by the provider they will be sent to: their hint, or whatever
    the replay route maps a missing hint to. Each group replays serially and
    stops at its first retryable failure. Distinct groups replay concurrently.
    """

    def __init__(
        self,
        store: SyncStore,
        *,
        telemetry: TelemetrySink | None = None,
        on_replayed: ReplayCallback | None = None,
    ):
        self.store = store
        self.on_replayed = on_replayed
        self._telemetry = telemetry or NullTelemetrySink()
        self._lock = asyncio.Lock()
        self._replay_task: asyncio.Task | None = None

    async def _io(self, func: Callable[..., T], *args: Any) -> T:
        async with self._lock:
            return await asyncio.to_thread(func, *args)

    # -------------------------------------------------------------------------
    # Store access
    # -------------------------------------------------------------------------

    async def persist(self, request: Request, reason: str) -> PersistedSyncItem:
        """
        Durably record a request for later replay.

        Args:
            request: The request that could not be dispatched.
            reason: Why it was deferred (``offline`` or ``all_providers_open``).

        Returns:
            The persisted item.
        """
        item = PersistedSyncItem.from_request(request)
        await self._io(self.store.append, item)
        logger.info(f"Deferred request {request.id} as sync item {item.id} ({reason})")
        self._telemetry.emit(
            TelemetryEventType.REQUEST_DEFERRED,
            request_id=request.id,
            sync_id=item.id,
            provider=request.provider,
            reason=reason,
        )
        return item

    async def pending(self) -> list[PersistedSyncItem]:
        """Pending items in replay order."""
        items = await self._io(self.store.list_pending)
        return sorted(items, key=lambda item: item.sort_key)

    async def count(self) -> int:
        return await self._io(self.store.count)

    async def clear(self) -> int:
        return await self._io(self.store.clear)

    # -------------------------------------------------------------------------
    # Replay
    # -------------------------------------------------------------------------

    @property
    def is_replaying(self) -> bool:
        return self._replay_task is not None and not self._replay_task.done()

    async def replay(self, dispatch: Dispatch, route: Route | None = None) -> ReplaySummary:
        """
        Replay pending items. Joins the running replay if there is one.

        Args:
            dispatch: Sends one request through the router without deferral.
            route: Maps a provider hint to its replay group. Unhinted items
                share one group when omitted.

        Returns:
            Summary of the round.
        """
        if not self.is_replaying:
            self._replay_task = asyncio.ensure_future(self._run_replay(dispatch, route))
        return await asyncio.shield(self._replay_task)

    async def cancel_replay(self) -> None:
        """Stop a running replay. Items not yet resolved stay in the store."""
        task = self._replay_task
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _run_replay(self, dispatch: Dispatch, route: Route | None) -> ReplaySummary:
        summary = ReplaySummary()
        items = await self.pending()
        if not items:
            return summary

        groups: dict[str | None, list[PersistedSyncItem]] = {}
        for item in items:
            key = route(item.provider) if route is not None else item.provider
            groups.setdefault(key, []).append(item)

        logger.info(f"Replaying {len(items)} deferred requests in {len(groups)} groups")
        self._telemetry.emit(
            TelemetryEventType.REPLAY_STARTED,
            items=len(items),
            groups=len(groups),
        )

        await asyncio.gather(
            *(self._replay_group(group, dispatch, summary) for group in groups.values())
        )

        logger.info(
            f"Replay finished: {summary.succeeded} succeeded, {summary.failed} failed,"
            f" {summary.remaining} remaining"
        )
        self._telemetry.emit(
            TelemetryEventType.REPLAY_COMPLETED,
            succeeded=summary.succeeded,
            failed=summary.failed,
            kept=summary.kept,
            skipped=summary.skipped,
        )
        return summary

    async def _replay_group(
        self,
        items: list[PersistedSyncItem],
        dispatch: Dispatch,
        summary: ReplaySummary,
    ) -> None:
        for index, item in enumerate(items):
            outcome: RouterResult | BaseException
            try:
                outcome = await dispatch(item.request.to_request())
            except Exception as e:
                outcome = e

            if isinstance(outcome, BaseException) and not is_terminal(outcome):
                item.attempt += 1
                await self._io(self.store.append, item)
                summary.kept += 1
                summary.skipped += len(items) - index - 1
                self._report(item, outcome, "kept")
                logger.info(
                    f"Replay of {item.id} hit {classify_error(outcome).value},"
                    " pausing the rest of its group"
                )
                return

            await self._io(self.store.remove, item.id)
            if isinstance(outcome, BaseException):
                summary.failed += 1
                self._report(item, outcome, "failed")
            else:
                summary.succeeded += 1
                self._report(item, outcome, "succeeded")

    def _report(
        self,
        item: PersistedSyncItem,
        outcome: "RouterResult | BaseException",
        status: str,
    ) -> None:
        self._telemetry.emit(
            TelemetryEventType.REPLAY_ITEM,
            sync_id=item.id,
            request_id=item.request.id,
            provider=item.provider,
            attempt=item.attempt,
            status=status,
            error=str(outcome) if isinstance(outcome, BaseException) else None,
        )
        if self.on_replayed is None:
            return
        try:
            self.on_replayed(item, outcome)
        except Exception as e:
            logger.warning(f"on_replayed callback failed for {item.id}: {e}")
