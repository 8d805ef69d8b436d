"""
Structured logging with run context.

GraphExecutor.execute() stamps run_id and graph_id into a ContextVar; each
node adds its node_id. Every record logged below that point carries the run
context, whichever formatter is installed:

    [INFO    ] [run:9f2c41aa | graph:debate | node:round_2_con] 🔧 tool call ...
    {"level": "info", "run_id": "...", "graph_id": "debate", "node_id": ...}

Parallel branches are asyncio tasks, which copy the context when created, so
a branch can set its own node_id without its siblings seeing it.
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

trace_context: ContextVar[dict[str, Any] | None] = ContextVar("loom_trace", default=None)

_ANSI = re.compile(r"\x1b\[[0-9;]*m")

# Loggers of libraries that talk to models, the weather API or browsers
THIRD_PARTY_LOGGERS = ("LiteLLM", "httpcore", "httpx", "aiohttp.access")

# Short labels for the human prefix, in display order
_PREFIX_KEYS = (("run_id", "run"), ("graph_id", "graph"), ("node_id", "node"))


def strip_ansi_codes(text: str) -> str:
    """Drop terminal color sequences (model output and LiteLLM logs contain them)."""
    return _ANSI.sub("", text)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: level, logger, message, run context and known extras."""

    EXTRA_FIELDS = ("event", "node_id", "model", "tool_name", "step", "latency_ms")

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
            **(trace_context.get() or {}),
        }

        for name in self.EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is None:
                continue
            entry[name] = strip_ansi_codes(value) if isinstance(value, str) else value

        if record.exc_info:
            entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))
        return json.dumps(entry, default=str, ensure_ascii=False)


class HumanReadableFormatter(logging.Formatter):
    """Colored single line: level, a short run-context prefix, the message."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def context_prefix(context: dict[str, Any]) -> str:
        parts = []
        for key, label in _PREFIX_KEYS:
            value = context.get(key)
            if not value:
                continue
            # run ids are long; the tail is enough to tell runs apart
            parts.append(f"{label}:{value[-8:] if key == 'run_id' else value}")
        return f"[{' | '.join(parts)}] " if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        prefix = self.context_prefix(trace_context.get() or {})
        line = f"{color}[{record.levelname:<8}]{self.RESET} {prefix}{record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _resolve_format(format: str) -> str:
    if format != "auto":
        return format
    if os.getenv("LOG_FORMAT", "").lower() == "json":
        return "json"
    return "json" if os.getenv("ENV", "development").lower() == "production" else "human"


def configure_logging(level: str = "INFO", format: str = "auto") -> None:
    """
    Install one root handler for the CLI or the web server.

    Args:
        level: Root log level name
        format: "json", "human", or "auto" (JSON when LOG_FORMAT=json or
            ENV=production)
    """
    level = level.upper()
    if _resolve_format(format) == "json":
        formatter: logging.Formatter = StructuredFormatter()
        _quiet_third_party_colors()
    else:
        formatter = HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in THIRD_PARTY_LOGGERS:
        library_logger = logging.getLogger(name)
        library_logger.handlers.clear()
        library_logger.propagate = True
        if level != "DEBUG":
            library_logger.setLevel(logging.WARNING)


def _quiet_third_party_colors() -> None:
    os.environ["NO_COLOR"] = "1"
    os.environ["FORCE_COLOR"] = "0"

    import litellm

    litellm.suppress_debug_info = True


def set_trace_context(**fields: Any) -> None:
    """Merge run_id / graph_id / node_id (or any other field) into the current context."""
    trace_context.set({**(trace_context.get() or {}), **fields})


def get_trace_context() -> dict[str, Any]:
    return dict(trace_context.get() or {})


def clear_trace_context() -> None:
    trace_context.set(None)
