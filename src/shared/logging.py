"""Shared logging and tracing infrastructure.

Every log record and span is stamped with the request context: the
storefront session ID and, while a search is active, its query. Both live
in :mod:`contextvars` so they follow tasks spawned by the search session.
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
import sys
from datetime import datetime, timezone

from opentelemetry import trace
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider

from src.shared.config import settings

# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------

_session_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("session_id", default="")
_search_query_var: contextvars.ContextVar[str] = contextvars.ContextVar("search_query", default="")

# record attribute -> (context var, span attribute)
_CONTEXT_FIELDS: dict[str, tuple[contextvars.ContextVar[str], str]] = {
    "session_id": (_session_id_var, "session.id"),
    "search_query": (_search_query_var, "search.query"),
}


def set_session_id(session_id: str) -> None:
    _session_id_var.set(session_id)


def get_session_id() -> str:
    return _session_id_var.get()


def set_search_query(query: str) -> None:
    """Record the query the current task is working on (empty in browse mode)."""
    _search_query_var.set(query)


def get_search_query() -> str:
    return _search_query_var.get()


def current_context() -> dict[str, str]:
    """Non-empty request context fields, keyed by record attribute name."""
    return {name: var.get() for name, (var, _) in _CONTEXT_FIELDS.items() if var.get()}


# ---------------------------------------------------------------------------
# Filter and formatters
# ---------------------------------------------------------------------------

class ContextFilter(logging.Filter):
    """Copy the request context onto every record (empty string when unset)."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, (var, _) in _CONTEXT_FIELDS.items():
            setattr(record, name, var.get())
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; context fields appear only when set."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, str] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, "")
            if value:
                payload[name] = value
        if record.exc_info and record.exc_info[1] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"


class ConsoleFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL [session] q='query' logger: message`` with a colored level."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = [stamp, f"{_LEVEL_COLORS.get(record.levelno, '')}{record.levelname}{_RESET}"]
        session_id = getattr(record, "session_id", "")
        if session_id:
            parts.append(f"[{session_id}]")
        query = getattr(record, "search_query", "")
        if query:
            parts.append(f"q={query!r}")
        parts.append(f"{record.name}: {record.getMessage()}")
        line = " ".join(parts)
        if record.exc_info and record.exc_info[1] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_initialized = False
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def setup_logging() -> None:
    """Install a single stderr handler on the root logger. Safe to call repeatedly."""
    global _initialized  # noqa: PLW0603
    if _initialized:
        return
    _initialized = True

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(ContextFilter())
    handler.setFormatter(JsonFormatter() if settings.log_format == "json" else ConsoleFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.DEBUG))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)


# ---------------------------------------------------------------------------
# Tracing
# ---------------------------------------------------------------------------

_tracer_initialized = False


class ContextSpanProcessor(SpanProcessor):
    """Stamp the request context on every span as it starts."""

    def on_start(self, span: trace.Span, parent_context: object = None) -> None:  # type: ignore[override]
        for name, value in current_context().items():
            span.set_attribute(_CONTEXT_FIELDS[name][1], value)

    def on_end(self, span: trace.Span) -> None:  # type: ignore[override]
        pass

    def shutdown(self) -> None:
        pass

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return True


def _init_tracer_provider() -> None:
    """Install the global tracer provider once.

    Spans go to the OTLP endpoint when one is configured (the standard
    ``OTEL_EXPORTER_OTLP_ENDPOINT`` variable wins over settings), to stdout
    when ``trace_to_console`` is set, and nowhere otherwise.
    """
    global _tracer_initialized  # noqa: PLW0603
    if _tracer_initialized:
        return
    _tracer_initialized = True

    from opentelemetry.sdk.resources import Resource

    provider = TracerProvider(resource=Resource.create({"service.name": "catalog-search"}))
    provider.add_span_processor(ContextSpanProcessor())

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT") or settings.otel_exporter_endpoint
    if endpoint:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    elif settings.trace_to_console:
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)


def shutdown_tracing() -> None:
    """Flush pending spans on application shutdown."""
    provider = trace.get_tracer_provider()
    if hasattr(provider, "shutdown"):
        provider.shutdown()


def get_tracer(name: str) -> trace.Tracer:
    _init_tracer_provider()
    return trace.get_tracer(name)
