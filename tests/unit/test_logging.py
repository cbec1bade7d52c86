"""Tests for the shared logging and tracing infrastructure."""

from __future__ import annotations

import json
import logging
import sys
from unittest.mock import MagicMock, call, patch

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor, SpanExporter, SpanExportResult

import src.shared.logging as log_mod
from src.shared import config
from src.shared.logging import (
    ConsoleFormatter,
    ContextFilter,
    ContextSpanProcessor,
    JsonFormatter,
    current_context,
    get_logger,
    get_search_query,
    get_session_id,
    get_tracer,
    set_search_query,
    set_session_id,
    setup_logging,
    shutdown_tracing,
)


@pytest.fixture(autouse=True)
def _reset_logging_state():
    log_mod._initialized = False
    log_mod._tracer_initialized = False
    set_session_id("")
    set_search_query("")
    yield
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)


def _record(msg: str = "hello", *args, level: int = logging.INFO, exc_info=None) -> logging.LogRecord:
    record = logging.LogRecord(
        name="catalog.test", level=level, pathname="", lineno=0,
        msg=msg, args=args, exc_info=exc_info,
    )
    ContextFilter().filter(record)
    return record


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def test_get_logger_returns_named_logger():
    logger = get_logger("catalog.client")
    assert isinstance(logger, logging.Logger)
    assert logger.name == "catalog.client"


def test_setup_logging_installs_one_handler():
    setup_logging()
    setup_logging()
    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert any(isinstance(f, ContextFilter) for f in handlers[0].filters)


def test_log_level_from_settings(monkeypatch):
    monkeypatch.setattr(config.settings, "log_level", "WARNING")
    setup_logging()
    assert logging.getLogger().level == logging.WARNING


def test_json_format_from_settings(monkeypatch):
    monkeypatch.setattr(config.settings, "log_format", "json")
    setup_logging()
    assert isinstance(logging.getLogger().handlers[0].formatter, JsonFormatter)


def test_http_client_loggers_quietened():
    setup_logging()
    assert logging.getLogger("httpx").level == logging.WARNING


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------


def test_context_defaults_empty():
    assert get_session_id() == ""
    assert get_search_query() == ""
    assert current_context() == {}


def test_context_round_trip():
    set_session_id("abc")
    set_search_query("air max")
    assert current_context() == {"session_id": "abc", "search_query": "air max"}


def test_filter_copies_context_onto_record():
    set_session_id("sess-42")
    record = _record()
    assert record.session_id == "sess-42"  # type: ignore[attr-defined]
    assert record.search_query == ""  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


def test_json_formatter_fields():
    set_session_id("json-test")
    set_search_query("rolex")
    data = json.loads(JsonFormatter().format(_record("fetched %d", 3)))
    assert data["level"] == "INFO"
    assert data["logger"] == "catalog.test"
    assert data["message"] == "fetched 3"
    assert data["session_id"] == "json-test"
    assert data["search_query"] == "rolex"
    assert "timestamp" in data
    assert "exception" not in data


def test_json_formatter_omits_empty_context():
    data = json.loads(JsonFormatter().format(_record()))
    assert "session_id" not in data
    assert "search_query" not in data


def test_json_formatter_with_exception():
    try:
        raise ValueError("boom")
    except ValueError:
        exc_info = sys.exc_info()
    data = json.loads(JsonFormatter().format(_record("err", level=logging.ERROR, exc_info=exc_info)))
    assert "boom" in data["exception"]


def test_console_formatter_with_context():
    set_session_id("console-test")
    set_search_query("aventus")
    output = ConsoleFormatter().format(_record("hello world"))
    assert "INFO" in output
    assert "[console-test]" in output
    assert "q='aventus'" in output
    assert output.endswith("catalog.test: hello world")


def test_console_formatter_without_context():
    output = ConsoleFormatter().format(_record("no session", level=logging.DEBUG))
    assert "[" not in output.replace("\033[", "")
    assert "q=" not in output
    assert "no session" in output


# ---------------------------------------------------------------------------
# Tracing
# ---------------------------------------------------------------------------


def test_get_tracer_returns_tracer():
    assert isinstance(get_tracer("test"), trace.Tracer)


def test_span_processor_stamps_context():
    set_session_id("s-1")
    set_search_query("jordan")
    span = MagicMock()
    ContextSpanProcessor().on_start(span)
    span.set_attribute.assert_has_calls([call("session.id", "s-1"), call("search.query", "jordan")])


def test_span_processor_without_context():
    span = MagicMock()
    ContextSpanProcessor().on_start(span)
    span.set_attribute.assert_not_called()


def test_context_in_exported_spans():
    class CollectingExporter(SpanExporter):
        def __init__(self):
            self.spans = []

        def export(self, spans):
            self.spans.extend(spans)
            return SpanExportResult.SUCCESS

    exporter = CollectingExporter()
    provider = TracerProvider()
    provider.add_span_processor(ContextSpanProcessor())
    provider.add_span_processor(SimpleSpanProcessor(exporter))

    set_session_id("e2e-session")
    with provider.get_tracer("test").start_as_current_span("catalog.search_products"):
        pass

    attrs = dict(exporter.spans[0].attributes or {})
    assert attrs["session.id"] == "e2e-session"
    provider.shutdown()


def test_shutdown_tracing_calls_provider_shutdown():
    provider = MagicMock()
    with patch("src.shared.logging.trace.get_tracer_provider", return_value=provider):
        shutdown_tracing()
    provider.shutdown.assert_called_once()
