"""Daily JSONL journal of job events, one file per job prefix and UTC day."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from .exceptions import JournalError
from .redaction import sanitize_for_logging


def json_default(value: Any) -> Any:
    """Serialize the non-JSON types that appear in job payloads."""
    if isinstance(value, datetime):
        current = value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)
        return current.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    # Money stays a decimal string so journals never carry float rounding.
    if isinstance(value, (Decimal, Path)):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json_line(record: dict[str, Any]) -> str:
    return json.dumps(record, default=json_default)


class JournalWriter:
    """Appends sanitized event records for one CLI session."""

    def __init__(
        self,
        journal_dir: Path,
        session_id: str,
        *,
        prefix: str = "accrual",
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.journal_dir = journal_dir
        self.session_id = session_id
        self._now_provider = now_provider or (lambda: datetime.now(UTC))
        try:
            self.journal_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise JournalError(f"Cannot create journal directory {journal_dir}: {exc}") from exc
        self.events_path = self.journal_dir / f"{prefix}-{self._now_provider():%Y%m%d}.jsonl"

    def write_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        record = {
            "ts": self._now_provider().isoformat(),
            "event_type": event_type,
            "session_id": self.session_id,
            "payload": sanitize_for_logging(payload),
            "metadata": sanitize_for_logging(metadata or {}),
        }
        try:
            line = to_json_line(record)
            with self.events_path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except (OSError, TypeError, ValueError) as exc:
            raise JournalError(f"Failed writing {self.events_path.name}: {exc}") from exc
