"""OpenTelemetry metrics instrumentation helpers."""

from __future__ import annotations

import logging

from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

from package_changes.core.config import settings

_logger = logging.getLogger(__name__)

_metrics_enabled = False
_meter = None
_provider: MeterProvider | None = None
_run_duration_hist = None
_runs_started_counter = None
_changes_counter = None
_excluded_records_counter = None
_unrankable_pairs_counter = None


def configure_metrics() -> None:
    """Initialise the metrics provider if enabled via settings."""

    global _metrics_enabled, _meter, _provider
    global _run_duration_hist, _runs_started_counter, _changes_counter
    global _excluded_records_counter, _unrankable_pairs_counter

    if not settings.otel_enabled:
        return
    if _metrics_enabled:
        return

    exporter_name = settings.otel_exporter.lower().strip()
    metric_readers = []

    if exporter_name == "console":
        exporter = ConsoleMetricExporter()
        metric_readers.append(PeriodicExportingMetricReader(exporter))
    elif exporter_name == "prometheus":
        try:
            from opentelemetry.exporter.prometheus import PrometheusMetricReader  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "Prometheus exporter selected but opentelemetry-exporter-prometheus is not installed."
            ) from exc
        metric_readers.append(PrometheusMetricReader())
    elif exporter_name == "otlp":
        try:
            from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "OTLP exporter selected but opentelemetry-exporter-otlp is not installed."
            ) from exc
        endpoint = settings.otel_otlp_endpoint
        exporter = OTLPMetricExporter(endpoint=endpoint) if endpoint else OTLPMetricExporter()
        metric_readers.append(PeriodicExportingMetricReader(exporter))
    else:
        _logger.warning("Unsupported OTEL exporter '%s'; defaulting to console", exporter_name)
        metric_readers.append(PeriodicExportingMetricReader(ConsoleMetricExporter()))

    _provider = MeterProvider(
        metric_readers=metric_readers, resource=Resource.create({"service.name": "package-change-analytics"})
    )
    metrics.set_meter_provider(_provider)
    _meter = metrics.get_meter("package_changes")
    _run_duration_hist = _meter.create_histogram(
        name="package_changes.run.duration",
        unit="s",
        description="Analysis run execution duration in seconds",
    )
    _runs_started_counter = _meter.create_counter(
        name="package_changes.runs.started",
        unit="1",
        description="Total analysis runs started",
    )
    _changes_counter = _meter.create_counter(
        name="package_changes.changes",
        unit="1",
        description="Package changes detected, by change type",
    )
    _excluded_records_counter = _meter.create_counter(
        name="package_changes.records.excluded",
        unit="1",
        description="Provisioning records excluded from comparison",
    )
    _unrankable_pairs_counter = _meter.create_counter(
        name="package_changes.pairs.unrankable",
        unit="1",
        description="Package pairs whose tier order could not be determined",
    )
    _metrics_enabled = True


def record_run_duration(seconds: float) -> None:
    if _metrics_enabled and _run_duration_hist is not None:
        _run_duration_hist.record(max(seconds, 0.0))


def increment_runs_started() -> None:
    if _metrics_enabled and _runs_started_counter is not None:
        _runs_started_counter.add(1)


def record_package_changes(change_type: str, count: int) -> None:
    if _metrics_enabled and _changes_counter is not None and count:
        _changes_counter.add(count, {"change_type": change_type})


def record_excluded_records(count: int) -> None:
    if _metrics_enabled and _excluded_records_counter is not None and count:
        _excluded_records_counter.add(count)


def record_unrankable_pairs(count: int) -> None:
    if _metrics_enabled and _unrankable_pairs_counter is not None and count:
        _unrankable_pairs_counter.add(count)


def collect_prometheus_metrics() -> tuple[bytes, str]:
    """Render the default Prometheus registry for the /metrics endpoint."""

    try:
        from prometheus_client import CONTENT_TYPE_LATEST, generate_latest  # type: ignore
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise RuntimeError(
            "Prometheus exporter selected but opentelemetry-exporter-prometheus is not installed."
        ) from exc
    return generate_latest(), CONTENT_TYPE_LATEST


def shutdown_metrics() -> None:
    global _metrics_enabled, _provider
    if _metrics_enabled and _provider is not None:
        try:
            _provider.shutdown()
        except Exception:  # pragma: no cover - defensive
            _logger.exception("Failed to shutdown metrics provider")
        finally:
            _metrics_enabled = False
            _provider = None
