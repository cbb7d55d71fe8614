"""Telemetry for aigate."""

from aigate.telemetry.sink import (
    JsonlTelemetrySink,
    NullTelemetrySink,
    RecordingTelemetrySink,
    TelemetryEventType,
    TelemetrySink,
    read_events,
)

__all__ = [
    "JsonlTelemetrySink",
    "NullTelemetrySink",
    "RecordingTelemetrySink",
    "TelemetryEventType",
    "TelemetrySink",
    "read_events",
]
