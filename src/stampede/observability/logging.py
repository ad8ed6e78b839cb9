"""Structured logging for load test runs.

Provides:
- JSON-formatted logs for log aggregation systems (ELK, Loki, etc.)
- Run and virtual-user correlation via context variables
- Human-readable console format for interactive runs

Usage:
    from stampede.observability.logging import configure_logging

    configure_logging(json_format=False, level="INFO")

    logger = logging.getLogger(__name__)
    with LogContext(run_id="a1b2c3", scenario="baseline"):
        logger.info("Run started")  # Includes run_id and scenario
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Context variables for run correlation
run_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("run_id", default="")
scenario_var: contextvars.ContextVar[str] = contextvars.ContextVar("scenario", default="")
vu_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("vu_id", default="")

_CONTEXT_VARS: dict[str, contextvars.ContextVar[str]] = {
    "run_id": run_id_var,
    "scenario": scenario_var,
    "vu_id": vu_id_var,
}

_STANDARD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """JSON log formatter with run correlation.

    Output format:
    {
        "timestamp": "2026-01-10T12:34:56.789Z",
        "level": "INFO",
        "logger": "stampede.engine.pool",
        "message": "Entering stage 1 at 60.0s",
        "run_id": "a1b2c3d4",
        "scenario": "baseline",
        "vu_id": "17"
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key, var in _CONTEXT_VARS.items():
            value = var.get()
            if value:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        # Extra fields passed via logger.info(..., extra={...})
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                try:
                    json.dumps(value)
                    log_data[key] = value
                except (TypeError, ValueError):
                    log_data[key] = str(value)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for interactive runs.

    Output format:
    2026-01-10 12:34:56 | INFO | stampede.engine.pool | Entering stage 1 | run=a1b2c3d4 vu=17
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname

        if self.use_colors:
            color = self.COLORS.get(level, "")
            level = f"{color}{level}{self.RESET}"

        message = record.getMessage()

        context_parts = []
        run_id = run_id_var.get()
        if run_id:
            context_parts.append(f"run={run_id[:8]}")
        vu_id = vu_id_var.get()
        if vu_id:
            context_parts.append(f"vu={vu_id}")

        context = f" | {' '.join(context_parts)}" if context_parts else ""

        result = f"{timestamp} | {level:8} | {record.name} | {message}{context}"

        if record.exc_info:
            result += "\n" + self.formatException(record.exc_info)

        return result


def configure_logging(
    json_format: bool = True,
    level: str = "INFO",
    use_colors: bool = True,
) -> None:
    """Configure application-wide logging.

    Args:
        json_format: Use JSON format (recommended for CI and log shipping)
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_colors: Use ANSI colors in console format
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # stderr keeps stdout free for the JSON summary
    handler = logging.StreamHandler(sys.stderr)

    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(ConsoleFormatter(use_colors=use_colors))

    root_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class LogContext:
    """Context manager for adding temporary run context to logs.

    Usage:
        with LogContext(run_id="a1b2c3", scenario="spike"):
            logger.info("Starting")  # Includes run_id and scenario
    """

    def __init__(self, **kwargs: str) -> None:
        unknown = set(kwargs) - set(_CONTEXT_VARS)
        if unknown:
            raise ValueError(f"Unknown log context keys: {sorted(unknown)}")
        self.extra = kwargs
        self._tokens: dict[str, contextvars.Token[str]] = {}

    def __enter__(self) -> LogContext:
        for key, value in self.extra.items():
            self._tokens[key] = _CONTEXT_VARS[key].set(value)
        return self

    def __exit__(self, *args: Any) -> None:
        for key, token in self._tokens.items():
            _CONTEXT_VARS[key].reset(token)
        self._tokens.clear()
