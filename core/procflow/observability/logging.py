"""
Structured logging with automatic run context propagation.

Key Features:
- Standard logger.info() calls pick up the current run context automatically
- ContextVar-based propagation: safe across concurrent asyncio tasks
- Dual output modes: JSON for production, human-readable for development

Architecture:
    ProcessEngine.start_run() → sets run_id / graph_id once
        ↓ (automatic propagation via ContextVar)
    RunExecutor._process_node() → adds node_id
        ↓
    EventBus.process() → adds event_id
        ↓
    Any module → logger.info("message") → record carries the whole context
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m|\033\[[0-9;]*m")

# Extra record attributes copied into JSON output when present
_EXTRA_FIELDS = ("event", "node_id", "run_id", "event_type", "action")


def strip_ansi_codes(text: str) -> str:
    """Remove ANSI escape codes from text for clean JSON logging."""
    return ANSI_ESCAPE_PATTERN.sub("", text)


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Produces one machine-parseable object per record with:
    - Standard fields (timestamp, level, logger, message)
    - Run context (run_id, graph_id, node_id, event_id)
    - Selected custom fields passed through ``extra=``
    """

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}

        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
        }
        log_entry.update(context)

        for name in _EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info:
            log_entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable formatter for development.

    Colorized level plus a short run/node prefix for local debugging.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}
        run_id = context.get("run_id", "")
        node_id = context.get("node_id", "")
        event_id = context.get("event_id", "")

        prefix_parts = []
        if run_id:
            prefix_parts.append(f"run:{run_id[-8:]}")
        if node_id:
            prefix_parts.append(f"node:{node_id}")
        if event_id:
            prefix_parts.append(f"evt:{event_id[-8:]}")
        context_prefix = f"[{' | '.join(prefix_parts)}] " if prefix_parts else ""

        color = self.COLORS.get(record.levelname, "")
        level = f"{record.levelname:<8}"

        event = ""
        record_event = getattr(record, "event", None)
        if record_event is not None:
            event = f" [{record_event}]"

        message = f"{color}[{level}]{self.RESET} {context_prefix}{record.getMessage()}{event}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def configure_logging(
    level: str = "INFO",
    format: str = "auto",  # "json", "human", or "auto"
) -> None:
    """
    Configure logging for the application.

    Call once at startup (CLI entry point, service bootstrap, test fixture).

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Output format:
            - "json": Machine-parseable JSON (for production)
            - "human": Human-readable with colors (for development)
            - "auto": JSON if LOG_FORMAT=json or ENV=production, else human
    """
    if format == "auto":
        log_format_env = os.getenv("LOG_FORMAT", "").lower()
        env = os.getenv("ENV", "development").lower()
        format = "json" if log_format_env == "json" or env == "production" else "human"

    formatter: logging.Formatter
    if format == "json":
        formatter = StructuredFormatter()
    else:
        formatter = HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())


def set_trace_context(**kwargs: Any) -> None:
    """
    Merge fields into the trace context of the current execution.

    Called by the engine at key points:
    - ProcessEngine.start_run() / resume entry points: run_id, graph_id
    - RunExecutor._process_node(): node_id
    - EventBus.process(): event_id, event_type

    Args:
        **kwargs: Context fields to set
    """
    current = trace_context.get() or {}
    trace_context.set({**current, **kwargs})


def get_trace_context() -> dict:
    """Return a copy of the current trace context (empty dict if unset)."""
    context = trace_context.get() or {}
    return context.copy()


def clear_trace_context() -> None:
    """Clear the trace context (between tests or before an unrelated execution)."""
    trace_context.set(None)
