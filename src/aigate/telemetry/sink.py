"""
Telemetry sinks for aigate.

Every router component reports state changes through a sink. Emitting is
fire-and-forget: a failing sink is logged and never disturbs a request.
"""

import gzip
import json
import logging
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any

from aigate.storage.paths import ensure_directory, expand_path

logger = logging.getLogger(__name__)


class TelemetryEventType(str, Enum):
    """Types of telemetry events."""

    # Breaker
    BREAKER_TRANSITION = "breaker_transition"

    # Request lifecycle
    REQUEST_SUBMITTED = "request_submitted"
    REQUEST_COMPLETED = "request_completed"
    REQUEST_FAILED = "request_failed"
    REQUEST_COALESCED = "request_coalesced"
    REQUEST_CANCELLED = "request_cancelled"
    REQUEST_DEFERRED = "request_deferred"
    RETRY_SCHEDULED = "retry_scheduled"
    PROVIDER_FALLBACK = "provider_fallback"

    # Cache
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    CACHE_INVALIDATED = "cache_invalidated"

    # Queue
    QUEUE_REJECTED = "queue_rejected"
    JOB_EVICTED = "job_evicted"

    # Sync
    CONNECTIVITY_CHANGED = "connectivity_changed"
    REPLAY_STARTED = "replay_started"
    REPLAY_ITEM = "replay_item"
    REPLAY_COMPLETED = "replay_completed"


class TelemetrySink:
    """
    Base telemetry sink.

    Subclasses implement ``_record``. ``emit`` never raises.
    """

    def emit(self, event_type: TelemetryEventType | str, **fields: Any) -> None:
        """
        Record a telemetry event.

        Args:
            event_type: Type of event.
            **fields: Event-specific data. Must be JSON-serializable for
                sinks that persist events.
        """
        try:
            event = {
                "timestamp": datetime.now().isoformat(),
                "event_type": TelemetryEventType(event_type).value,
                **fields,
            }
            self._record(event)
        except Exception as e:
            logger.warning(f"Telemetry sink failed for {event_type}: {e}")

    def _record(self, event: dict[str, Any]) -> None:
        raise NotImplementedError

    def flush(self) -> None:
        """Flush buffered events, if any."""
        return None

    def close(self) -> None:
        """Flush and release resources."""
        self.flush()


class NullTelemetrySink(TelemetrySink):
    """Sink that discards every event."""

    def _record(self, event: dict[str, Any]) -> None:
        return None


class RecordingTelemetrySink(TelemetrySink):
    """Sink that keeps events in memory. Used by tests and embedders."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    def _record(self, event: dict[str, Any]) -> None:
        self.events.append(event)

    def of_type(self, event_type: TelemetryEventType | str) -> list[dict[str, Any]]:
        """Events of one type, in emission order."""
        wanted = TelemetryEventType(event_type).value
        return [event for event in self.events if event["event_type"] == wanted]

    def clear(self) -> None:
        self.events.clear()


class JsonlTelemetrySink(TelemetrySink):
    """
    JSON Lines telemetry sink.

    Buffers events and appends them to a log file with rotation,
    compression and retention support.
    """

    def __init__(
        self,
        log_path: str | Path,
        enable: bool = True,
        rotation: str = "daily",
        max_size_mb: int = 50,
        retention_days: int = 30,
        compress_old: bool = True,
        buffer_size: int = 50,
        flush_interval_seconds: int = 5,
    ) -> None:
        """
        Initialize the JSON Lines sink.

        Args:
            log_path: Path to telemetry log file
            enable: Whether logging is enabled
            rotation: Rotation strategy (daily, weekly, size)
            max_size_mb: Maximum log file size in MB before rotation
            retention_days: Days to keep old logs
            compress_old: Whether to compress rotated logs
            buffer_size: Number of events to buffer before flush
            flush_interval_seconds: Seconds between forced flushes
        """
        self.log_path = expand_path(log_path)
        self.enable = enable
        self.rotation = rotation
        self.max_size_mb = max_size_mb
        self.retention_days = retention_days
        self.compress_old = compress_old
        self.buffer_size = buffer_size
        self.flush_interval_seconds = flush_interval_seconds

        self._buffer: list[dict[str, Any]] = []
        self._last_flush = datetime.now()

        if self.enable:
            ensure_directory(self.log_path.parent)

    @classmethod
    def from_config(cls, config: Any) -> "JsonlTelemetrySink":
        """
        Create a sink from configuration.

        Args:
            config: TelemetryConfig instance

        Returns:
            Configured JsonlTelemetrySink
        """
        return cls(
            log_path=config.path,
            enable=config.enable,
            rotation=config.rotation,
            max_size_mb=config.max_size_mb,
            retention_days=config.retention_days,
            compress_old=config.compress_old,
            buffer_size=config.buffer_size,
            flush_interval_seconds=config.flush_interval_seconds,
        )

    def _record(self, event: dict[str, Any]) -> None:
        if not self.enable:
            return

        self._buffer.append(event)

        now = datetime.now()
        should_flush = (
            len(self._buffer) >= self.buffer_size
            or (now - self._last_flush).total_seconds() >= self.flush_interval_seconds
        )
        if should_flush:
            self.flush()

    def flush(self) -> None:
        """Flush buffered events to disk."""
        if not self.enable or not self._buffer:
            return

        self._rotate_if_needed()

        with self.log_path.open("a", encoding="utf-8") as f:
            for event in self._buffer:
                f.write(json.dumps(event, default=str) + "\n")

        self._buffer.clear()
        self._last_flush = datetime.now()

    def _rotate_if_needed(self) -> None:
        """Rotate log file if needed based on configuration."""
        if not self.log_path.exists():
            return

        should_rotate = False

        if self.rotation == "size":
            size_mb = self.log_path.stat().st_size / (1024 * 1024)
            should_rotate = size_mb >= self.max_size_mb
        elif self.rotation == "daily":
            mtime = datetime.fromtimestamp(self.log_path.stat().st_mtime)
            should_rotate = mtime.date() < datetime.now().date()
        elif self.rotation == "weekly":
            mtime = datetime.fromtimestamp(self.log_path.stat().st_mtime)
            should_rotate = (datetime.now() - mtime).days >= 7

        if should_rotate:
            self._rotate_log()

    def _rotate_log(self) -> None:
        """Rotate the current log file."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        rotated_path = self.log_path.parent / f"{self.log_path.stem}_{timestamp}{self.log_path.suffix}"
        self.log_path.rename(rotated_path)

        if self.compress_old:
            self._compress_log(rotated_path)

        self._clean_old_logs()

    def _compress_log(self, log_path: Path) -> None:
        """Compress a log file with gzip."""
        compressed_path = log_path.with_suffix(log_path.suffix + ".gz")
        with log_path.open("rb") as f_in, gzip.open(compressed_path, "wb") as f_out:
            f_out.write(f_in.read())
        log_path.unlink()

    def _clean_old_logs(self) -> None:
        """Remove logs older than the retention period."""
        cutoff = datetime.now() - timedelta(days=self.retention_days)
        pattern = f"{self.log_path.stem}_*{self.log_path.suffix}*"
        for old_log in self.log_path.parent.glob(pattern):
            if datetime.fromtimestamp(old_log.stat().st_mtime) < cutoff:
                old_log.unlink()


def read_events(log_path: str | Path, limit: int | None = None) -> list[dict[str, Any]]:
    """
    Read events back from a JSON Lines telemetry log.

    Args:
        log_path: Path to the log file.
        limit: Return only the last ``limit`` events.

    Returns:
        Parsed events, oldest first. Unparseable lines are skipped.
    """
    path = expand_path(log_path)
    if not path.exists():
        return []

    events: list[dict[str, Any]] = []
    with path.open(encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                logger.debug(f"Skipping malformed telemetry line in {path}")

    if limit is not None:
        events = events[-limit:] if limit > 0 else []
    return events
