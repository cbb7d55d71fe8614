"""
Response cache for aigate.

Fingerprint-keyed, TTL-bounded, LRU-bounded store of provider results with
tag-based invalidation. Lookups are advisory: a miss or an expired entry
simply routes the request to a live dispatch.
"""

import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from typing import Any

from aigate.providers.models import CacheEntry

logger = logging.getLogger(__name__)


class ResponseCache:
    """In-memory LRU cache with per-entry TTL and invalidation tags."""

    def __init__(
        self,
        default_ttl: float = 300.0,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            default_ttl: TTL in seconds for entries stored without one.
            max_entries: Upper bound on stored entries; least recently used go first.
            clock: Monotonic time source.
        """
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._tag_index: dict[str, set[str]] = {}

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    @classmethod
    def from_config(cls, config: Any, clock: Callable[[], float] = time.monotonic) -> "ResponseCache":
        return cls(default_ttl=config.default_ttl, max_entries=config.max_entries, clock=clock)

    # -------------------------------------------------------------------------
    # Internal bookkeeping
    # -------------------------------------------------------------------------

    def _drop(self, fingerprint: str) -> CacheEntry | None:
        entry = self._entries.pop(fingerprint, None)
        if entry is None:
            return None
        for tag in entry.tags:
            members = self._tag_index.get(tag)
            if members is None:
                continue
            members.discard(fingerprint)
            if not members:
                del self._tag_index[tag]
        return entry

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def get_entry(self, fingerprint: str) -> CacheEntry | None:
        """Return the live entry for a fingerprint, or None."""
        entry = self._entries.get(fingerprint)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            self._drop(fingerprint)
            self._expirations += 1
            self._misses += 1
            return None

        self._entries.move_to_end(fingerprint)
        entry.hit_count += 1
        self._hits += 1
        return entry

    def get(self, fingerprint: str) -> bytes | None:
        """
        Look up a cached result.

        Args:
            fingerprint: Request fingerprint.

        Returns:
            The cached payload, or None on a miss or after the TTL elapsed.
        """
        entry = self.get_entry(fingerprint)
        return entry.result if entry is not None else None

    def set(
        self,
        fingerprint: str,
        result: bytes,
        ttl: float | None = None,
        tags: Iterable[str] = (),
    ) -> None:
        """
        Store a result.

        Args:
            fingerprint: Request fingerprint.
            result: Payload to cache.
            ttl: Seconds to keep the entry. ``default_ttl`` when None; a
                non-positive TTL stores nothing.
            tags: Invalidation tags, e.g. ``provider:openai``.
        """
        ttl = self.default_ttl if ttl is None else ttl
        self._drop(fingerprint)
        if ttl <= 0:
            return

        entry = CacheEntry(
            fingerprint=fingerprint,
            result=result,
            stored_at=self._clock(),
            ttl=ttl,
            tags=frozenset(tags),
        )
        self._entries[fingerprint] = entry
        for tag in entry.tags:
            self._tag_index.setdefault(tag, set()).add(fingerprint)

        while len(self._entries) > self.max_entries:
            oldest = next(iter(self._entries))
            self._drop(oldest)
            self._evictions += 1

    def invalidate(self, fingerprint: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        return self._drop(fingerprint) is not None

    def invalidate_by_prefix(self, tag: str) -> int:
        """
        Remove every entry whose tag set contains ``tag``.

        A tag nothing carries is a no-op.

        Returns:
            Number of entries removed.
        """
        members = self._tag_index.get(tag)
        if not members:
            return 0

        removed = 0
        for fingerprint in list(members):
            if self._drop(fingerprint) is not None:
                removed += 1
        logger.debug(f"Invalidated {removed} cache entries tagged {tag}")
        return removed

    def sweep_expired(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [fp for fp, entry in self._entries.items() if entry.is_expired(now)]
        for fingerprint in expired:
            self._drop(fingerprint)
        self._expirations += len(expired)
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    def clear(self) -> None:
        """Remove everything."""
        self._entries.clear()
        self._tag_index.clear()

    def stats(self) -> dict[str, int]:
        """Counters since creation."""
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "expirations": self._expirations,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, fingerprint: object) -> bool:
        entry = self._entries.get(fingerprint)  # type: ignore[arg-type]
        return entry is not None and not entry.is_expired(self._clock())
