"""Tests for telemetry sinks."""

import gzip
import json
import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

from aigate.config import TelemetryConfig
from aigate.telemetry import (
    JsonlTelemetrySink,
    NullTelemetrySink,
    RecordingTelemetrySink,
    TelemetryEventType,
    TelemetrySink,
    read_events,
)


class ExplodingSink(TelemetrySink):
    def _record(self, event):
        raise RuntimeError("disk on fire")


class TestInMemorySinks:
    """Test the null and recording sinks."""

    def test_recording_sink_keeps_events(self) -> None:
        """Test that events are recorded in order with type and timestamp."""
        sink = RecordingTelemetrySink()
        sink.emit(TelemetryEventType.CACHE_HIT, request_id="r1")
        sink.emit("cache_miss", request_id="r2")

        assert [event["event_type"] for event in sink.events] == ["cache_hit", "cache_miss"]
        assert sink.events[0]["request_id"] == "r1"
        assert "timestamp" in sink.events[0]
        assert len(sink.of_type("cache_miss")) == 1

        sink.clear()
        assert sink.events == []

    def test_null_sink_discards(self) -> None:
        """Test that the null sink accepts anything."""
        NullTelemetrySink().emit(TelemetryEventType.REQUEST_COMPLETED, attempts=1)

    def test_failing_sink_never_raises(self) -> None:
        """Test that sink failures are swallowed."""
        ExplodingSink().emit(TelemetryEventType.REQUEST_FAILED, error="x")

    def test_unknown_event_type_never_raises(self) -> None:
        """Test that an invalid event type is logged, not raised."""
        sink = RecordingTelemetrySink()
        sink.emit("not_a_real_event")
        assert sink.events == []


class TestJsonlTelemetrySink:
    """Test JsonlTelemetrySink functionality."""

    def test_buffered_until_flush(self) -> None:
        """Test that events stay buffered until the buffer fills or flush is called."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "telemetry.jsonl"
            sink = JsonlTelemetrySink(log_path=log_path, buffer_size=10, flush_interval_seconds=3600)

            sink.emit(TelemetryEventType.BREAKER_TRANSITION, provider="p", from_state="CLOSED", to_state="OPEN")
            assert not log_path.exists()

            sink.flush()
            lines = log_path.read_text().splitlines()
            assert len(lines) == 1
            event = json.loads(lines[0])
            assert event["event_type"] == "breaker_transition"
            assert event["to_state"] == "OPEN"

    def test_flushes_when_buffer_full(self) -> None:
        """Test automatic flush at buffer_size."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "telemetry.jsonl"
            sink = JsonlTelemetrySink(log_path=log_path, buffer_size=2, flush_interval_seconds=3600)

            sink.emit(TelemetryEventType.CACHE_HIT)
            sink.emit(TelemetryEventType.CACHE_MISS)

            assert len(read_events(log_path)) == 2

    def test_disabled_sink_writes_nothing(self) -> None:
        """Test that a disabled sink never touches disk."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "nested" / "telemetry.jsonl"
            sink = JsonlTelemetrySink(log_path=log_path, enable=False, buffer_size=1)
            sink.emit(TelemetryEventType.CACHE_HIT)
            sink.close()
            assert not log_path.exists()

    def test_size_rotation_compresses_old_log(self) -> None:
        """Test that size rotation renames and gzips the old log."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "telemetry.jsonl"
            log_path.write_text("x" * (1024 * 1024 + 1))
            sink = JsonlTelemetrySink(log_path=log_path, rotation="size", max_size_mb=1, buffer_size=1)

            sink.emit(TelemetryEventType.REPLAY_STARTED, items=1, groups=1)

            rotated = list(Path(tmpdir).glob("telemetry_*.jsonl.gz"))
            assert len(rotated) == 1
            with gzip.open(rotated[0], "rt") as f:
                assert f.read().startswith("xxx")
            assert len(read_events(log_path)) == 1

    def test_daily_rotation(self) -> None:
        """Test that a log last written yesterday is rotated."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "telemetry.jsonl"
            log_path.write_text("{}\n")
            yesterday = (datetime.now() - timedelta(days=1)).timestamp()
            os.utime(log_path, (yesterday, yesterday))

            sink = JsonlTelemetrySink(log_path=log_path, rotation="daily", compress_old=False, buffer_size=1)
            sink.emit(TelemetryEventType.CACHE_HIT)

            assert len(list(Path(tmpdir).glob("telemetry_*.jsonl"))) == 1

    def test_from_config(self) -> None:
        """Test creating a sink from TelemetryConfig."""
        with tempfile.TemporaryDirectory() as tmpdir:
            config = TelemetryConfig(enable=True, path=str(Path(tmpdir) / "t.jsonl"), buffer_size=3)
            sink = JsonlTelemetrySink.from_config(config)
            assert sink.buffer_size == 3
            assert sink.enable is True


class TestReadEvents:
    """Test read_events."""

    def test_missing_file(self) -> None:
        """Test reading a log that does not exist."""
        assert read_events("/nonexistent/telemetry.jsonl") == []

    def test_limit_and_malformed_lines(self) -> None:
        """Test that limit keeps the newest events and bad lines are skipped."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "telemetry.jsonl"
            lines = [json.dumps({"event_type": "cache_hit", "n": n}) for n in range(5)]
            lines.insert(2, "{broken")
            log_path.write_text("\n".join(lines) + "\n")

            events = read_events(log_path, limit=2)
            assert [event["n"] for event in events] == [3, 4]
            assert len(read_events(log_path)) == 5
            assert read_events(log_path, limit=0) == []
