"""Logging setup and the structured job event logger."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from .exceptions import JournalError
from .journal import JournalWriter, to_json_line
from .redaction import sanitize_for_logging, sanitize_text

_WARNING_EVENTS = frozenset(
    {
        "archive_exists",
        "job_runs_insert_error",
        "lock_held",
        "lock_release_error",
        "skip_already_ran_today",
        "completion_email_error",
        "increment_email_error",
        "user_not_found",
        "discrepancy_active",
        "discrepancy_completed",
    }
)
_ERROR_EVENTS = frozenset(
    {
        "fetch_error",
        "completion_credit_failed",
        "completion_credit_exception",
        "investment_exception",
        "finalize_exception",
        "lock_error",
        "archive_release_error",
        "store_error",
        "fetch_active_error",
        "fetch_completed_error",
    }
)


class JsonConsoleFormatter(logging.Formatter):
    """Simple JSON formatter for structured console logs."""

    def format(self, record: logging.LogRecord) -> str:
        job_event = getattr(record, "job_event", None)
        if isinstance(job_event, dict):
            event: dict[str, Any] = {"level": record.levelname, "logger": record.name}
            event.update(job_event)
            return to_json_line(event)

        event = {
            "ts": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": sanitize_text(record.getMessage()),
        }
        if record.exc_info:
            event["exception"] = sanitize_text(self.formatException(record.exc_info))
        return json.dumps(event, default=str)


def setup_logger(name: str = "daily_accrual", level: int = logging.INFO) -> logging.Logger:
    """Create and configure a process-wide logger."""
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(JsonConsoleFormatter())
    logger.addHandler(handler)
    return logger


class JobEventLogger:
    """Emit job events as single-line JSON records.

    Every event goes to ``logger`` (rendered by ``JsonConsoleFormatter``),
    is appended to the JSONL journal when one is attached, and is handed to
    ``sink`` when given. Tests pass ``sink=events.append`` to capture the
    exact event stream.
    """

    def __init__(
        self,
        logger: logging.Logger,
        job_name: str = "daily-investments",
        journal: JournalWriter | None = None,
        sink: Callable[[dict[str, Any]], None] | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.logger = logger
        self.job_name = job_name
        self.journal = journal
        self._sink = sink
        self._now_provider = now_provider or (lambda: datetime.now(UTC))

    def emit(self, event: str, **fields: Any) -> dict[str, Any]:
        """Emit one event and return the record that was written."""
        record: dict[str, Any] = {
            "ts": self._now_provider().isoformat(),
            "job": self.job_name,
            "event": event,
        }
        record.update(sanitize_for_logging(fields))

        if event in _ERROR_EVENTS:
            level = logging.ERROR
        elif event in _WARNING_EVENTS:
            level = logging.WARNING
        else:
            level = logging.INFO
        self.logger.log(level, event, extra={"job_event": record})

        if self.journal is not None:
            try:
                self.journal.write_event(event_type=event, payload=fields)
            except JournalError as exc:
                self.logger.error("Failed to write %s journal event: %s", event, exc)
        if self._sink is not None:
            self._sink(record)
        return record
