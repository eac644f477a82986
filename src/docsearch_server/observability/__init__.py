"""Observability: structured logging, OpenTelemetry tracing and Prometheus metrics."""

from docsearch_server.observability.context import bind_trace_ids, current_trace_ids
from docsearch_server.observability.logging import JsonFormatter, configure_logging
from docsearch_server.observability.metrics import (
    ERROR_COUNT,
    INDEX_COMMITS,
    INDEX_DOC_COUNT,
    INDEX_REINITIALIZATIONS,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    SEARCH_LATENCY,
    configure_metrics_exporter,
    get_metrics,
    get_metrics_content_type,
    init_metrics,
    track_latency,
)
from docsearch_server.observability.tracing import create_span, get_tracer, init_tracing, trace_request


__all__ = [
    "ERROR_COUNT",
    "INDEX_COMMITS",
    "INDEX_DOC_COUNT",
    "INDEX_REINITIALIZATIONS",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "SEARCH_LATENCY",
    "JsonFormatter",
    "bind_trace_ids",
    "configure_logging",
    "configure_metrics_exporter",
    "create_span",
    "current_trace_ids",
    "get_metrics",
    "get_metrics_content_type",
    "get_tracer",
    "init_metrics",
    "init_tracing",
    "track_latency",
]
