"""OpenTelemetry tracing with Starlette middleware."""

from __future__ import annotations

from contextlib import contextmanager
import logging
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import SpanKind, Status, StatusCode

from docsearch_server.observability.context import bind_span_id, bind_trace_ids, clear_trace_ids, new_trace_id
from docsearch_server.observability.metrics import REQUEST_COUNT, REQUEST_LATENCY, track_latency


if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.trace import Span, Tracer
    from starlette.requests import Request
    from starlette.responses import Response

logger = logging.getLogger(__name__)

_tracer_holder: dict[str, Any] = {"tracer": None, "provider": None}


def init_tracing(service_name: str = "docsearch-server", otlp_endpoint: str | None = None) -> TracerProvider:
    """Initialize OpenTelemetry tracing, exporting over OTLP/HTTP when an endpoint is set."""
    provider = _tracer_holder.get("provider")
    if isinstance(provider, TracerProvider):
        return provider

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if otlp_endpoint:
        traces_endpoint = otlp_endpoint.rstrip("/")
        if not traces_endpoint.endswith("/v1/traces"):
            traces_endpoint += "/v1/traces"
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint)))
        logger.info("OTLP trace export enabled to %s", traces_endpoint)
    trace.set_tracer_provider(provider)
    _tracer_holder["provider"] = provider
    _tracer_holder["tracer"] = trace.get_tracer(__name__)
    logger.info("Tracing initialized for service: %s", service_name)
    return provider


def get_tracer() -> Tracer:
    if _tracer_holder["tracer"] is None:
        init_tracing()
    return _tracer_holder["tracer"]


@contextmanager
def create_span(
    name: str,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: dict[str, Any] | None = None,
) -> Generator[Span, None, None]:
    """Create a traced span and bind its id to the logging context."""
    tracer = get_tracer()
    with tracer.start_as_current_span(name, kind=kind) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)

        bind_span_id(format(span.get_span_context().span_id, "016x"))

        try:
            yield span
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            span.record_exception(exc)
            raise


async def trace_request(request: Request, call_next: Any) -> Response:
    """HTTP middleware: one server span per request plus request metrics."""
    trace_id = request.headers.get("x-trace-id") or new_trace_id()
    bind_trace_ids(trace_id)
    route = request.url.path
    attributes = {
        "http.method": request.method,
        "http.route": route,
        "http.url": str(request.url),
    }
    try:
        with (
            track_latency(REQUEST_LATENCY, method=request.method, route=route),
            create_span("http.request", kind=SpanKind.SERVER, attributes=attributes) as span,
        ):
            response: Response = await call_next(request)
            span.set_attribute("http.status_code", response.status_code)
            if response.status_code >= 500:
                span.set_status(Status(StatusCode.ERROR, f"HTTP {response.status_code}"))
        REQUEST_COUNT.labels(method=request.method, route=route, status=str(response.status_code)).inc()
        response.headers["x-trace-id"] = trace_id
        return response
    finally:
        clear_trace_ids()
