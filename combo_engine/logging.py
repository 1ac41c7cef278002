"""
Logging configuration for the combination engine.

Provides consistent logging format across all modules with:
- JSON structured output for batch jobs
- Human-readable output for development
- Run ID tracking so every line of a search can be correlated
"""

import logging
import sys
from collections import deque
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Context variable for tracking the current search/allocation run
current_run_id: ContextVar[str | None] = ContextVar("current_run_id", default=None)

_NOISY_LOGGERS = ("concurrent.futures", "asyncio")


class ComboFormatter(logging.Formatter):
    """Adds an ISO timestamp and the current run id to every record."""

    def format(self, record: logging.LogRecord) -> str:
        record.timestamp = datetime.now(UTC).isoformat()

        run_id = current_run_id.get()
        record.run_id = f"[{run_id}] " if run_id else ""

        return super().format(record)


class RecentLogsHandler(logging.Handler):
    """Keeps the last N records in memory for diagnostics."""

    def __init__(self, capacity: int = 1000):
        super().__init__()
        self.records: deque[dict[str, Any]] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.records.append({
                "timestamp": datetime.now(UTC).isoformat(),
                "level": record.levelname,
                "level_no": record.levelno,
                "logger": record.name,
                "run_id": current_run_id.get(),
                "message": record.getMessage(),
            })
        except Exception:
            self.handleError(record)


_recent_handler = RecentLogsHandler()


def setup_logging(level: str = "INFO", json_output: bool = False) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, emit one JSON object per line

    Returns:
        Configured root logger
    """
    root = logging.getLogger()
    root.handlers.clear()

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(numeric_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    if json_output:
        fmt = (
            '{"timestamp": "%(timestamp)s", "level": "%(levelname)s", '
            '"module": "%(name)s", "run_id": "%(run_id)s", "message": "%(message)s"}'
        )
    else:
        fmt = "%(timestamp)s | %(levelname)-8s | %(name)s | %(run_id)s%(message)s"

    formatter = ComboFormatter(fmt)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    _recent_handler.setLevel(numeric_level)
    root.addHandler(_recent_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a specific module (typically __name__)."""
    return logging.getLogger(name)


def get_recent_logs(level: str = "INFO", limit: int = 50) -> list[dict[str, Any]]:
    """Get the most recent in-memory records at or above `level`."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    filtered = [r for r in _recent_handler.records if r["level_no"] >= numeric_level]
    return filtered[-limit:]


def set_run_id(run_id: str) -> None:
    """Set the current run ID for log correlation."""
    current_run_id.set(run_id)


def clear_run_id() -> None:
    """Clear the current run ID."""
    current_run_id.set(None)
