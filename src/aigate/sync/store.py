"""
Durable stores for deferred requests.

``JsonlSyncStore`` keeps an append-only JSON Lines log of ``append`` and
``remove`` records. Every write is flushed and fsynced before returning, a
torn trailing line left by a crash is skipped on load, and the log is
compacted atomically (temp file + ``os.replace``) once enough dead records
pile up.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from aigate.providers.models import PersistedSyncItem
from aigate.storage.paths import ensure_directory, get_sync_queue_path

logger = logging.getLogger(__name__)


class SyncStore(ABC):
    """Durable record of requests waiting for replay."""

    @abstractmethod
    def append(self, item: PersistedSyncItem) -> None:
        """Persist an item. An item with an existing id replaces it in place."""
        ...

    @abstractmethod
    def remove(self, item_id: str) -> bool:
        """Forget an item. Returns True if it was pending."""
        ...

    @abstractmethod
    def list_pending(self) -> list[PersistedSyncItem]:
        """Pending items in storage order."""
        ...

    def count(self) -> int:
        return len(self.list_pending())

    def clear(self) -> int:
        """Remove every pending item. Returns how many were removed."""
        removed = 0
        for item in self.list_pending():
            if self.remove(item.id):
                removed += 1
        return removed


class MemorySyncStore(SyncStore):
    """Non-durable store for tests and embedding."""

    def __init__(self) -> None:
        self._items: dict[str, PersistedSyncItem] = {}

    def append(self, item: PersistedSyncItem) -> None:
        self._items[item.id] = item.model_copy(deep=True)

    def remove(self, item_id: str) -> bool:
        return self._items.pop(item_id, None) is not None

    def list_pending(self) -> list[PersistedSyncItem]:
        return [item.model_copy(deep=True) for item in self._items.values()]

    def count(self) -> int:
        return len(self._items)


class JsonlSyncStore(SyncStore):
    """Append-only JSON Lines sync log."""

    def __init__(
        self,
        path: Path | str | None = None,
        compact_threshold: int = 100,
        fsync: bool = True,
    ):
        """
        Initialize the store.

        Args:
            path: Log file. Defaults to ~/.aigate/sync_queue.jsonl.
            compact_threshold: Dead records tolerated before compaction.
            fsync: Whether to fsync after every write.
        """
        self.path = Path(path).expanduser() if path is not None else get_sync_queue_path()
        self.compact_threshold = compact_threshold
        self.fsync = fsync

        self._items: dict[str, PersistedSyncItem] | None = None
        self._dead_records = 0
        self._needs_newline = False

    @classmethod
    def from_config(cls, config: Any) -> "JsonlSyncStore":
        return cls(
            path=config.path,
            compact_threshold=config.compact_threshold,
            fsync=config.fsync,
        )

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _load(self) -> dict[str, PersistedSyncItem]:
        if self._items is not None:
            return self._items

        items: dict[str, PersistedSyncItem] = {}
        records = 0
        if self.path.exists():
            raw = self.path.read_bytes()
            self._needs_newline = bool(raw) and not raw.endswith(b"\n")
            for lineno, line in enumerate(raw.splitlines(), start=1):
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                    op = record["op"]
                    if op == "append":
                        item = PersistedSyncItem.model_validate(record["item"])
                        items[item.id] = item
                    elif op == "remove":
                        items.pop(record["id"], None)
                    else:
                        raise ValueError(f"unknown op {op!r}")
                except (ValueError, KeyError, TypeError, PydanticValidationError) as e:
                    logger.warning(f"Skipping unreadable record at {self.path}:{lineno}: {e}")
                    continue
                records += 1

        self._items = items
        self._dead_records = records - len(items)
        return items

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def _write_record(self, record: dict[str, Any]) -> None:
        ensure_directory(self.path.parent)
        line = json.dumps(record, separators=(",", ":")) + "\n"
        if self._needs_newline:
            line = "\n" + line
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line)
            f.flush()
            if self.fsync:
                os.fsync(f.fileno())
        self._needs_newline = False

    def append(self, item: PersistedSyncItem) -> None:
        items = self._load()
        self._write_record({"op": "append", "item": item.model_dump(mode="json")})
        if item.id in items:
            self._dead_records += 1
        items[item.id] = item.model_copy(deep=True)

    def remove(self, item_id: str) -> bool:
        items = self._load()
        if item_id not in items:
            return False
        self._write_record({"op": "remove", "id": item_id})
        del items[item_id]
        self._dead_records += 2
        if self._dead_records >= self.compact_threshold:
            self.compact()
        return True

    def list_pending(self) -> list[PersistedSyncItem]:
        return [item.model_copy(deep=True) for item in self._load().values()]

    def count(self) -> int:
        return len(self._load())

    def compact(self) -> None:
        """Rewrite the log with live items only. Failures leave the old log in place."""
        items = self._load()
        ensure_directory(self.path.parent)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                for item in items.values():
                    record = {"op": "append", "item": item.model_dump(mode="json")}
                    f.write(json.dumps(record, separators=(",", ":")) + "\n")
                f.flush()
                if self.fsync:
                    os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            logger.warning(f"Compaction of {self.path} failed: {e}")
            Path(tmp_name).unlink(missing_ok=True)
            return

        self._dead_records = 0
        self._needs_newline = False
        logger.debug(f"Compacted {self.path} to {len(items)} records")
