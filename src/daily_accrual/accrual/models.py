"""Typed options and metrics for the daily accrual job."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..config import DEFAULT_CREDIT_POLICY_CUTOVER, DEFAULT_JOB_NAME, Settings


class JobOptions(BaseModel):
    """Flags for one job invocation."""

    dry_run: bool = False
    source: str = "cron"
    send_increment_emails: bool = False
    send_completion_emails: bool = True
    force_credit_on_completion_only: bool = False
    credit_policy_cutover: datetime = DEFAULT_CREDIT_POLICY_CUTOVER
    job_name: str = DEFAULT_JOB_NAME
    use_run_lock: bool = True
    run_lock_ttl_seconds: int = Field(default=3600, gt=0)

    @field_validator("credit_policy_cutover", mode="after")
    @classmethod
    def ensure_timezone_aware(cls, value: datetime) -> datetime:
        return value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> JobOptions:
        values: dict[str, Any] = {
            "dry_run": settings.dry_run,
            "source": settings.job_source,
            "send_increment_emails": settings.send_increment_emails,
            "send_completion_emails": settings.send_completion_emails,
            "force_credit_on_completion_only": settings.force_credit_on_completion_only,
            "credit_policy_cutover": settings.credit_policy_cutover,
            "job_name": settings.job_name,
            "use_run_lock": settings.run_lock_enabled,
            "run_lock_ttl_seconds": settings.run_lock_ttl_seconds,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    def run_meta(self) -> dict[str, Any]:
        """Flags recorded on the job run row."""
        return {
            "dry_run": self.dry_run,
            "send_increment_emails": self.send_increment_emails,
            "send_completion_emails": self.send_completion_emails,
            "force_credit_on_completion_only": self.force_credit_on_completion_only,
        }


class JobMetrics(BaseModel):
    """Counters returned by every run, including dry runs and failed fetches."""

    processed: int = 0
    completed: int = 0
    total_applied: Decimal = Decimal("0")
