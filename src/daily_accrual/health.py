"""Staleness and success-rate report over recent job runs."""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel

from .models import JobRun
from .store.base import AccrualStore


class JobHealthStats(BaseModel):
    successes: int = 0
    failures: int = 0
    success_rate: float = 0.0
    avg_processed: int = 0
    avg_completed: int = 0


class JobHealthReport(BaseModel):
    """Health of a scheduled job, judged from its most recent runs."""

    stale: bool
    stale_threshold_hours: float
    now: datetime
    last_run: JobRun | None = None
    recent_count: int = 0
    stats: JobHealthStats


def summarize_runs(runs: list[JobRun]) -> JobHealthStats:
    if not runs:
        return JobHealthStats()
    successes = sum(1 for run in runs if run.success)
    return JobHealthStats(
        successes=successes,
        failures=len(runs) - successes,
        success_rate=round(successes / len(runs), 3),
        avg_processed=round(sum(run.processed_count or 0 for run in runs) / len(runs)),
        avg_completed=round(sum(run.completed_count or 0 for run in runs) / len(runs)),
    )


def check_job_health(
    store: AccrualStore,
    job_name: str,
    *,
    now: datetime,
    stale_hours: float = 26.0,
    limit: int = 10,
) -> JobHealthReport:
    """A job is stale when its last run started more than ``stale_hours`` ago, or never ran."""
    runs = store.list_job_runs(job_name, limit=limit)
    last = runs[0] if runs else None
    stale = (
        last is None
        or last.started_at is None
        or now - last.started_at > timedelta(hours=stale_hours)
    )
    return JobHealthReport(
        stale=stale,
        stale_threshold_hours=stale_hours,
        now=now,
        last_run=last,
        recent_count=len(runs),
        stats=summarize_runs(runs),
    )
