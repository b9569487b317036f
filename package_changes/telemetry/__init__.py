"""Telemetry utilities for exporting run events and metrics."""

from .event_sink import ClickHouseEventSink, EventSink, FileEventSink, NullEventSink, sink_from_settings
from .metrics import (
    collect_prometheus_metrics,
    configure_metrics,
    increment_runs_started,
    record_excluded_records,
    record_package_changes,
    record_run_duration,
    record_unrankable_pairs,
    shutdown_metrics,
)

__all__ = [
    "ClickHouseEventSink",
    "EventSink",
    "FileEventSink",
    "NullEventSink",
    "sink_from_settings",
    "collect_prometheus_metrics",
    "configure_metrics",
    "increment_runs_started",
    "record_excluded_records",
    "record_package_changes",
    "record_run_duration",
    "record_unrankable_pairs",
    "shutdown_metrics",
]
