"""Unit tests for durable sync stores."""

import json

import pytest

from aigate.config import SyncConfig
from aigate.providers.models import PersistedSyncItem, Priority, Request
from aigate.sync import JsonlSyncStore, MemorySyncStore


def _item(payload: bytes = b'{"q": 1}', **kwargs) -> PersistedSyncItem:
    return PersistedSyncItem.from_request(Request(payload=payload, **kwargs))


class TestMemorySyncStore:
    """Tests for MemorySyncStore."""

    def test_append_list_remove(self):
        store = MemorySyncStore()
        item = _item()
        store.append(item)

        assert store.count() == 1
        assert store.list_pending()[0].id == item.id
        assert store.remove(item.id) is True
        assert store.remove(item.id) is False

    def test_returns_copies(self):
        store = MemorySyncStore()
        store.append(_item())
        store.list_pending()[0].attempt = 9
        assert store.list_pending()[0].attempt == 0


class TestJsonlSyncStore:
    """Tests for JsonlSyncStore."""

    @pytest.fixture
    def path(self, temp_dir):
        return temp_dir / "sync" / "queue.jsonl"

    def test_survives_restart(self, path):
        store = JsonlSyncStore(path, fsync=False)
        first = _item(b"a", provider="openai", priority=Priority.HIGH)
        second = _item(b"b")
        store.append(first)
        store.append(second)
        store.remove(first.id)

        reopened = JsonlSyncStore(path, fsync=False)
        [item] = reopened.list_pending()
        assert item.id == second.id
        assert item.request.to_request().payload == b"b"

    def test_updated_item_replaces_previous_record(self, path):
        store = JsonlSyncStore(path, fsync=False)
        item = _item()
        store.append(item)
        item.attempt = 2
        store.append(item)

        [loaded] = JsonlSyncStore(path, fsync=False).list_pending()
        assert loaded.attempt == 2

    def test_torn_trailing_line_is_skipped(self, path):
        store = JsonlSyncStore(path, fsync=False)
        kept = _item(b"kept")
        store.append(kept)
        with path.open("a", encoding="utf-8") as f:
            f.write('{"op": "append", "item": {"id": "half')

        reopened = JsonlSyncStore(path, fsync=False)
        assert [item.id for item in reopened.list_pending()] == [kept.id]

        later = _item(b"later")
        reopened.append(later)
        ids = [item.id for item in JsonlSyncStore(path, fsync=False).list_pending()]
        assert ids == [kept.id, later.id]

    def test_unknown_records_are_skipped(self, path):
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"op": "rewind"}) + "\nnot json\n", encoding="utf-8")
        assert JsonlSyncStore(path, fsync=False).count() == 0

    def test_compaction_drops_dead_records(self, path):
        store = JsonlSyncStore(path, compact_threshold=4, fsync=False)
        items = [_item(bytes([n])) for n in range(3)]
        for item in items:
            store.append(item)
        store.remove(items[0].id)
        store.remove(items[1].id)

        lines = [line for line in path.read_text(encoding="utf-8").splitlines() if line]
        assert len(lines) == 1
        assert json.loads(lines[0])["item"]["id"] == items[2].id
        assert JsonlSyncStore(path, fsync=False).count() == 1

    def test_clear(self, path):
        store = JsonlSyncStore(path, fsync=False)
        store.append(_item(b"a"))
        store.append(_item(b"b"))
        assert store.clear() == 2
        assert JsonlSyncStore(path, fsync=False).count() == 0

    def test_missing_file_is_empty(self, path):
        assert JsonlSyncStore(path).list_pending() == []

    def test_from_config(self, path):
        store = JsonlSyncStore.from_config(SyncConfig(path=str(path), compact_threshold=7, fsync=False))
        assert store.path == path
        assert store.compact_threshold == 7
        assert store.fsync is False
