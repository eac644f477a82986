"""Request-scoped trace identifiers for log correlation."""

from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass, replace
import secrets


@dataclass(frozen=True)
class TraceIds:
    trace_id: str
    span_id: str


_current_ids: ContextVar[TraceIds | None] = ContextVar("docsearch_trace_ids", default=None)


def new_trace_id() -> str:
    """Return a 32-char hex trace id."""
    return secrets.token_hex(16)


def new_span_id() -> str:
    """Return a 16-char hex span id."""
    return secrets.token_hex(8)


def current_trace_ids() -> TraceIds:
    """Return the ids bound to the current context, creating them on first use."""
    ids = _current_ids.get()
    if ids is None:
        ids = TraceIds(trace_id=new_trace_id(), span_id=new_span_id())
        _current_ids.set(ids)
    return ids


def bind_trace_ids(trace_id: str, span_id: str | None = None) -> TraceIds:
    ids = TraceIds(trace_id=trace_id, span_id=span_id or new_span_id())
    _current_ids.set(ids)
    return ids


def bind_span_id(span_id: str) -> None:
    """Swap the span id while keeping the trace id."""
    _current_ids.set(replace(current_trace_ids(), span_id=span_id))


def clear_trace_ids() -> None:
    _current_ids.set(None)
