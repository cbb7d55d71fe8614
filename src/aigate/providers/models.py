"""
Router data models for aigate.

Defines the request, result, health and queue types shared by every
component of the routing layer.
"""

import base64
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import cached_property
from typing import Any

from pydantic import BaseModel, Field

from aigate.providers.fingerprint import compute_fingerprint


class Priority(str, Enum):
    """Request priority classes."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key: lower is served first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.NORMAL: 1, Priority.LOW: 2}


class BreakerState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class Request:
    """An opaque inference request."""

    payload: bytes
    provider: str | None = None
    priority: Priority = Priority.NORMAL
    timeout: float = 60.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=datetime.now)

    @cached_property
    def fingerprint(self) -> str:
        """Deterministic hash of the normalized provider hint and payload."""
        return compute_fingerprint(self.provider, self.payload)


@dataclass
class ProviderResponse:
    """Raw response returned by a provider adapter."""

    payload: bytes
    status: int = 200
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class RouterResult:
    """Outcome of a successful submit."""

    request_id: str
    fingerprint: str
    provider: str | None
    payload: bytes
    cached: bool = False
    coalesced: bool = False
    attempts: int = 0
    latency_ms: float = 0.0
    completed_at: datetime = field(default_factory=datetime.now)

    def model_dump(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dict."""
        return {
            "request_id": self.request_id,
            "fingerprint": self.fingerprint,
            "provider": self.provider,
            "payload_size": len(self.payload),
            "cached": self.cached,
            "coalesced": self.coalesced,
            "attempts": self.attempts,
            "latency_ms": self.latency_ms,
            "completed_at": self.completed_at.isoformat(),
        }


@dataclass
class ProviderHealth:
    """Point-in-time view of a provider's breaker."""

    provider: str
    state: BreakerState
    consecutive_failures: int
    last_failure_at: float | None
    open_until: float | None
    cooldown: float

    @property
    def is_available(self) -> bool:
        """Whether new dispatches may be attempted."""
        return self.state != BreakerState.OPEN


@dataclass
class CacheEntry:
    """A cached provider result with expiration metadata."""

    fingerprint: str
    result: bytes
    stored_at: float  # time.monotonic()
    ttl: float
    tags: frozenset[str] = frozenset()
    hit_count: int = 0

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl

    def is_expired(self, now: float | None = None) -> bool:
        return (time.monotonic() if now is None else now) >= self.expires_at


@dataclass
class QueuedJob:
    """A request admitted to the queue."""

    request: Request
    seq: int = 0
    attempt: int = 0
    next_eligible_at: float = 0.0
    provider: str | None = None  # current lane
    enqueued_at: float = field(default_factory=time.monotonic)

    @property
    def id(self) -> str:
        return self.request.id

    @property
    def priority(self) -> Priority:
        return self.request.priority


# =============================================================================
# Durable sync records
# =============================================================================


class SyncRequestRecord(BaseModel):
    """Serialized form of a Request inside the durable sync store."""

    id: str
    provider: str | None = None
    payload: str  # base64
    priority: Priority = Priority.NORMAL
    timeout: float = 60.0
    created_at: datetime

    @classmethod
    def from_request(cls, request: Request) -> "SyncRequestRecord":
        return cls(
            id=request.id,
            provider=request.provider,
            payload=base64.b64encode(request.payload).decode("ascii"),
            priority=request.priority,
            timeout=request.timeout,
            created_at=request.created_at,
        )

    def to_request(self) -> Request:
        return Request(
            payload=base64.b64decode(self.payload),
            provider=self.provider,
            priority=self.priority,
            timeout=self.timeout,
            id=self.id,
            created_at=self.created_at,
        )


class PersistedSyncItem(BaseModel):
    """A request waiting in the durable sync queue for replay."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    request: SyncRequestRecord
    enqueued_at: datetime = Field(default_factory=datetime.now)
    attempt: int = 0

    @classmethod
    def from_request(cls, request: Request) -> "PersistedSyncItem":
        return cls(request=SyncRequestRecord.from_request(request))

    @property
    def provider(self) -> str | None:
        return self.request.provider

    @property
    def sort_key(self) -> tuple[int, datetime]:
        """Replay order: priority first, then FIFO."""
        return (self.request.priority.rank, self.enqueued_at)
