"""
Logging for flowgraph runs, with the run's trace context attached to every record.

Workflow.run() puts ``workflow`` and ``execution_id`` into a ContextVar;
Node.invoke() adds ``node_id`` around each invocation. Because every node
task the executor spawns gets a copy of the current context, plain
``logger.info(...)`` calls inside node code are tagged with the run and the
node that emitted them, even while siblings run concurrently.

Two renderings:
- JSON lines (one object per record) for log shippers
- coloured single lines with a ``[wf:… | exec:… | node:…]`` prefix for terminals
"""

import json
import logging
import os
import re
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

_ANSI = re.compile(r"\x1b\[[0-9;]*m")

# Record attributes (passed via ``extra=``) copied into JSON output
RECORD_FIELDS = ("event", "latency_ms", "node_id", "attempt", "step")

# Client libraries whose own handlers are replaced by the root JSON handler
_THIRD_PARTY_LOGGERS = ("LiteLLM", "httpcore", "httpx", "openai")


def strip_ansi_codes(text: str) -> str:
    return _ANSI.sub("", text)


class StructuredFormatter(logging.Formatter):
    """
    Render a record as one JSON object.

    Keys: timestamp, level, logger, message, then the trace context, then any
    of RECORD_FIELDS present on the record, then ``exception`` if any.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
            **(trace_context.get() or {}),
        }
        for name in RECORD_FIELDS:
            value = getattr(record, name, None)
            if value is None:
                continue
            entry[name] = strip_ansi_codes(value) if isinstance(value, str) else value
        if record.exc_info:
            entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Coloured level, trace prefix, message and ``[event]`` suffix."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def trace_prefix() -> str:
        context = trace_context.get() or {}
        parts = []
        if context.get("workflow"):
            parts.append(f"wf:{context['workflow']}")
        if context.get("execution_id"):
            # Execution ids are uuid hex; the tail is enough to tell runs apart
            parts.append(f"exec:{context['execution_id'][-8:]}")
        if context.get("node_id"):
            parts.append(f"node:{context['node_id']}")
        return f"[{' | '.join(parts)}] " if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        line = f"{color}[{record.levelname:<8}]{self.RESET} {self.trace_prefix()}"
        line += record.getMessage()

        event = getattr(record, "event", None)
        if event is not None:
            line += f" [{event}]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_format(format: str) -> str:
    if format != "auto":
        return format
    if os.getenv("LOG_FORMAT", "").lower() == "json":
        return "json"
    return "json" if os.getenv("ENV", "development").lower() == "production" else "human"


def configure_logging(level: str | None = None, format: str | None = None) -> None:
    """
    Install one stream handler on the root logger.

    Call once at startup, from the embedding application or a test fixture.

    Args:
        level: Log level name; defaults to ``executor.log_level`` from the
            flowgraph configuration file (INFO if unset)
        format: "json", "human" or "auto"; defaults to ``executor.log_format``.
            "auto" picks JSON when LOG_FORMAT=json or ENV=production.
    """
    from flowgraph.config import ExecutorConfig

    if level is None or format is None:
        defaults = ExecutorConfig()
        level = level or defaults.log_level
        format = format or defaults.log_format

    resolved = _resolve_format(format)
    formatter: logging.Formatter
    if resolved == "json":
        formatter = StructuredFormatter()
        _quiet_third_party_output()
    else:
        formatter = HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    if resolved == "json":
        for name in _THIRD_PARTY_LOGGERS:
            third_party = logging.getLogger(name)
            third_party.handlers.clear()
            third_party.propagate = True


def _quiet_third_party_output() -> None:
    """Keep colour codes and litellm's debug banners out of JSON logs."""
    os.environ["NO_COLOR"] = "1"
    os.environ["FORCE_COLOR"] = "0"

    import litellm

    litellm.suppress_debug_info = True


def set_trace_context(**fields: Any) -> None:
    """Merge fields into the current task's trace context."""
    trace_context.set({**(trace_context.get() or {}), **fields})


@contextmanager
def scoped_trace_context(**fields: Any) -> Iterator[None]:
    """Add fields to the trace context for the duration of the block."""
    token = trace_context.set({**(trace_context.get() or {}), **fields})
    try:
        yield
    finally:
        trace_context.reset(token)


def get_trace_context() -> dict[str, Any]:
    return dict(trace_context.get() or {})


def clear_trace_context() -> None:
    trace_context.set(None)
