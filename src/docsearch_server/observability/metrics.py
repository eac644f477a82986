"""Prometheus metrics for request, search and index signals, mirrored to OpenTelemetry."""

from __future__ import annotations

from contextlib import contextmanager
import time
from typing import TYPE_CHECKING, Any

from opentelemetry import metrics as otel_metrics
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest


if TYPE_CHECKING:
    from collections.abc import Generator


_meter_holder: dict[str, Any] = {"meter": None, "provider": None}


def init_metrics(
    service_name: str = "docsearch-server",
    metric_readers: list[PeriodicExportingMetricReader] | None = None,
) -> MeterProvider:
    """Initialize the OpenTelemetry meter provider (idempotent)."""
    provider = _meter_holder.get("provider")
    if isinstance(provider, MeterProvider):
        return provider

    resource = Resource.create({"service.name": service_name})
    provider = MeterProvider(resource=resource, metric_readers=metric_readers or [])
    otel_metrics.set_meter_provider(provider)
    _meter_holder["provider"] = provider
    _meter_holder["meter"] = otel_metrics.get_meter(__name__)
    return provider


def configure_metrics_exporter(endpoint: str | None, *, service_name: str = "docsearch-server") -> None:
    """Export metrics over OTLP/HTTP when an endpoint is configured."""
    if not endpoint or _meter_holder.get("provider") is not None:
        return
    metrics_endpoint = endpoint.rstrip("/")
    if not metrics_endpoint.endswith("/v1/metrics"):
        metrics_endpoint += "/v1/metrics"
    reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=metrics_endpoint))
    init_metrics(service_name=service_name, metric_readers=[reader])


def _get_meter():
    meter = _meter_holder.get("meter")
    if meter is None:
        init_metrics()
        meter = _meter_holder.get("meter")
    return meter


def _label_key(labels: dict[str, str]) -> tuple[tuple[str, str], ...]:
    return tuple(sorted(labels.items()))


class _BoundMetric:
    def __init__(self, wrapper: MetricBridge, labels: dict[str, str]) -> None:
        self._wrapper = wrapper
        self._labels = labels

    def inc(self, amount: float = 1.0) -> None:
        self._wrapper.inc(self._labels, amount)

    def observe(self, value: float) -> None:
        self._wrapper.observe(self._labels, value)

    def set(self, value: float) -> None:
        self._wrapper.set(self._labels, value)


class MetricBridge:
    """A Prometheus metric paired with a lazily created OTel instrument."""

    def __init__(
        self,
        prom_metric: Counter | Histogram | Gauge,
        *,
        otel_name: str,
        otel_description: str,
        otel_kind: str,
    ) -> None:
        self._prom_metric = prom_metric
        self._otel_name = otel_name
        self._otel_description = otel_description
        self._otel_kind = otel_kind
        self._otel_instrument = None
        self._last_values: dict[tuple[tuple[str, str], ...], float] = {}

    def labels(self, **labels: str) -> _BoundMetric:
        return _BoundMetric(self, labels)

    def _ensure_otel_instrument(self):
        if self._otel_instrument is not None:
            return self._otel_instrument
        meter = _get_meter()
        if self._otel_kind == "counter":
            self._otel_instrument = meter.create_counter(self._otel_name, description=self._otel_description)
        elif self._otel_kind == "histogram":
            self._otel_instrument = meter.create_histogram(self._otel_name, description=self._otel_description)
        elif self._otel_kind == "gauge":
            self._otel_instrument = meter.create_up_down_counter(self._otel_name, description=self._otel_description)
        else:
            msg = f"Unknown metric kind: {self._otel_kind}"
            raise ValueError(msg)
        return self._otel_instrument

    def inc(self, labels: dict[str, str], amount: float) -> None:
        self._prom_metric.labels(**labels).inc(amount)
        self._ensure_otel_instrument().add(amount, labels)

    def observe(self, labels: dict[str, str], value: float) -> None:
        self._prom_metric.labels(**labels).observe(value)
        self._ensure_otel_instrument().record(value, labels)

    def set(self, labels: dict[str, str], value: float) -> None:
        self._prom_metric.labels(**labels).set(value)
        key = _label_key(labels)
        delta = value - self._last_values.get(key, 0.0)
        if delta:
            self._ensure_otel_instrument().add(delta, labels)
        self._last_values[key] = value


REQUEST_COUNT = MetricBridge(
    Counter("docsearch_http_requests_total", "Total HTTP requests", ["method", "route", "status"]),
    otel_name="docsearch_http_requests_total",
    otel_description="Total HTTP requests",
    otel_kind="counter",
)

REQUEST_LATENCY = MetricBridge(
    Histogram(
        "docsearch_http_request_latency_seconds",
        "HTTP request latency in seconds",
        ["method", "route"],
        buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
    ),
    otel_name="docsearch_http_request_latency_seconds",
    otel_description="HTTP request latency in seconds",
    otel_kind="histogram",
)

SEARCH_LATENCY = MetricBridge(
    Histogram(
        "docsearch_search_latency_seconds",
        "Search execution latency including highlighting",
        ["highlight"],
        buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5),
    ),
    otel_name="docsearch_search_latency_seconds",
    otel_description="Search execution latency including highlighting",
    otel_kind="histogram",
)

INDEX_COMMITS = MetricBridge(
    Counter("docsearch_index_commits_total", "Committed index mutations", ["status"]),
    otel_name="docsearch_index_commits_total",
    otel_description="Committed index mutations",
    otel_kind="counter",
)

INDEX_REINITIALIZATIONS = MetricBridge(
    Counter("docsearch_index_reinitializations_total", "Index handle reinitializations", ["outcome"]),
    otel_name="docsearch_index_reinitializations_total",
    otel_description="Index handle reinitializations",
    otel_kind="counter",
)

INDEX_DOC_COUNT = MetricBridge(
    Gauge("docsearch_index_document_count", "Records in the latest index snapshot", ["index"]),
    otel_name="docsearch_index_document_count",
    otel_description="Records in the latest index snapshot",
    otel_kind="gauge",
)

ERROR_COUNT = MetricBridge(
    Counter("docsearch_errors_total", "Errors surfaced to callers", ["error_type", "component"]),
    otel_name="docsearch_errors_total",
    otel_description="Errors surfaced to callers",
    otel_kind="counter",
)


@contextmanager
def track_latency(histogram: MetricBridge, **labels: str) -> Generator[None, None, None]:
    """Context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
