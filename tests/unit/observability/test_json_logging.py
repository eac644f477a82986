"""Tests for structured logging and trace correlation."""

from __future__ import annotations

import json
import logging

import pytest

from docsearch_server.observability.context import bind_trace_ids, clear_trace_ids, current_trace_ids
from docsearch_server.observability.logging import JsonFormatter, configure_logging


@pytest.fixture(autouse=True)
def _reset_trace_ids():
    clear_trace_ids()
    yield
    clear_trace_ids()


def _record(msg: str = "hello %s", args=("world",), **extra) -> logging.LogRecord:
    record = logging.LogRecord("docsearch_server.search.lifecycle", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_trace_ids():
    bind_trace_ids("a" * 32, "b" * 16)

    entry = json.loads(JsonFormatter().format(_record()))

    assert entry["message"] == "hello world"
    assert entry["level"] == "INFO"
    assert entry["component"] == "lifecycle"
    assert entry["trace_id"] == "a" * 32
    assert entry["span_id"] == "b" * 16


def test_json_formatter_redacts_and_truncates():
    entry = json.loads(JsonFormatter().format(_record(token="secret-value", note="x" * 600)))

    assert entry["token"] == "[REDACTED]"
    assert entry["note"].endswith("...")
    assert len(entry["note"]) == 503


def test_json_formatter_truncates_long_messages():
    entry = json.loads(JsonFormatter().format(_record("%s", ("y" * 3000,))))
    assert len(entry["message"]) == 2003


def test_json_formatter_serializes_sets():
    entry = json.loads(JsonFormatter().format(_record(fields={"title", "content"})))
    assert entry["fields"] == ["content", "title"]


def test_trace_ids_created_on_first_use():
    ids = current_trace_ids()
    assert len(ids.trace_id) == 32
    assert len(ids.span_id) == 16
    assert current_trace_ids() == ids


def test_configure_logging_replaces_handlers():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging(level="debug", json_output=True, logger_levels={"noisy": "error"})

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
        assert logging.getLogger("noisy").level == logging.ERROR
        assert logging.getLogger("uvicorn.access").level == logging.WARNING
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
