"""Log setup for renewal sync runs.

Module code keeps using ``logging.getLogger(__name__)``; structlog only
formats. Each record carries whatever run context the sync driver has bound
(``mode``, ``run_date``, ``specialist``) plus the ids of the active OTel span,
so one line of JSON is enough to find a booking in a trace.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog
from opentelemetry import trace

LOG_FILE_NAME = "renewal_sync.log"

# Third-party loggers that only emit per-request chatter.
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

_NO_TRACE = "0" * 32
_NO_SPAN = "0" * 16


def add_otel_context(logger, method_name, event_dict: dict) -> dict:  # noqa: ARG001
    """Stamp ``trace_id``/``span_id`` of the current span (zeros outside one)."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    else:
        event_dict["trace_id"] = _NO_TRACE
        event_dict["span_id"] = _NO_SPAN
    return event_dict


def _record_chain(timestamp_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_fmt),
        add_otel_context,
    ]


def _formatter(renderer, timestamp_fmt: str) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_record_chain(timestamp_fmt),
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
) -> None:
    """Route the root logger to stderr, and to a JSON file under *log_root*.

    ``fmt`` is ``"text"`` (coloured, ``HH:MM:SS``) or ``"json"`` (ISO stamps).
    Calling this again replaces the previous handlers.
    """
    if fmt == "json":
        console = _formatter(structlog.processors.JSONRenderer(), "iso")
    else:
        console = _formatter(structlog.dev.ConsoleRenderer(), "%H:%M:%S")

    root = logging.getLogger()
    root.handlers.clear()

    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(console)
    root.addHandler(stream)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if log_root is not None:
        directory = Path(log_root)
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(directory / LOG_FILE_NAME, encoding="utf-8")
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), "iso"))
        root.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
