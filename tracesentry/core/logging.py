"""Structured logging configuration.

Provides:
  - JSON-formatted log output for batch/CI runs
  - Human-readable colored output for development
  - Run ID correlation across frame building, detectors and merging
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from tracesentry.core.config import get_settings

_EXTRA_FIELDS = ("run_id", "detector", "frame_id", "findings_count", "duration_ms", "source")


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.pathname:
            log_entry["module"] = record.module
            log_entry["function"] = record.funcName
            log_entry["line"] = record.lineno

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else "Unknown",
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


class DevFormatter(logging.Formatter):
    """Colored human-readable formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now(timezone.utc).strftime("%H:%M:%S")
        prefix = f"{color}{ts} [{record.levelname:>8s}]{self.RESET}"
        msg = record.getMessage()

        run_id = getattr(record, "run_id", None)
        if run_id:
            msg = f"[{run_id[:8]}] {msg}"

        base = f"{prefix} {record.name}: {msg}"
        if record.exc_info and record.exc_info[1]:
            base += "\n" + self.formatException(record.exc_info)
        return base


def setup_logging(env: str | None = None, log_level: str | None = None) -> None:
    """Configure logging for an application embedding the analyzer.

    Args:
        env: Application environment (development/staging/production),
            defaults to ``Settings.app_env``
        log_level: Minimum log level, defaults to ``Settings.log_level``
    """
    if env is None or log_level is None:
        settings = get_settings()
        env = env or settings.app_env
        log_level = log_level or settings.log_level

    level = getattr(logging, log_level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if env in ("staging", "production"):
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(DevFormatter())

    root.addHandler(handler)


class RunLogFilter(logging.Filter):
    """Filter that adds the analysis run id to records from ``logger_name``."""

    def __init__(self, run_id: str = "", logger_name: str = "tracesentry") -> None:
        super().__init__()
        self.run_id = run_id
        self.logger_name = logger_name

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name == self.logger_name or record.name.startswith(self.logger_name + "."):
            record.run_id = self.run_id  # type: ignore[attr-defined]
        return True


def _reachable_handlers(logger: logging.Logger) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    current: logging.Logger | None = logger
    while current is not None:
        handlers.extend(current.handlers)
        if not current.propagate:
            break
        current = current.parent
    return handlers


@contextmanager
def run_logging(run_id: str, logger_name: str = "tracesentry") -> Iterator[RunLogFilter]:
    """Tag every record emitted under ``logger_name`` with ``run_id``.

    The filter sits on the handlers the package's records reach, so records
    from child loggers (detectors, normalizers) are tagged too.
    """
    run_filter = RunLogFilter(run_id, logger_name)
    handlers = _reachable_handlers(logging.getLogger(logger_name))
    for handler in handlers:
        handler.addFilter(run_filter)
    try:
        yield run_filter
    finally:
        for handler in handlers:
            handler.removeFilter(run_filter)
