"""Report whether the scheduled accrual job is running on time."""

from __future__ import annotations

import argparse
import json
import sys
from datetime import UTC, datetime

from rich.console import Console
from rich.table import Table

from .config import load_settings
from .exceptions import ConfigError, StoreError
from .health import JobHealthReport, check_job_health
from .journal import json_default
from .log_setup import setup_logger
from .redaction import sanitize_text
from .store import SupabaseRestStore


def parse_args() -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Check recent runs of the daily accrual job.")
    parser.add_argument("--job-name", default=None, help="Override JOB_NAME.")
    parser.add_argument("--limit", type=int, default=10, help="Number of recent runs to inspect.")
    parser.add_argument(
        "--hours",
        type=float,
        default=None,
        help="Override JOB_STALE_HOURS.",
    )
    parser.add_argument("--json", action="store_true", help="Print the report as JSON.")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 3 when the job is stale.",
    )
    return parser.parse_args()


def _print_report(console: Console, job_name: str, report: JobHealthReport) -> None:
    last = report.last_run
    table = Table(title=f"Job Health: {job_name}")
    table.add_column("Field")
    table.add_column("Value", overflow="fold")
    table.add_row("Stale", str(report.stale))
    table.add_row("Threshold (h)", str(report.stale_threshold_hours))
    table.add_row(
        "Last started (UTC)",
        last.started_at.astimezone(UTC).isoformat() if last and last.started_at else "-",
    )
    table.add_row("Last success", str(last.success) if last else "-")
    table.add_row("Recent runs", str(report.recent_count))
    table.add_row("Success rate", f"{report.stats.success_rate:.3f}")
    table.add_row("Avg processed", str(report.stats.avg_processed))
    table.add_row("Avg completed", str(report.stats.avg_completed))
    console.print(table)


def main() -> int:
    """Print the health report for the configured job."""
    args = parse_args()
    logger = setup_logger()
    console = Console()

    if args.limit <= 0:
        logger.error("--limit must be > 0.")
        return 2
    if args.hours is not None and args.hours <= 0:
        logger.error("--hours must be > 0.")
        return 2

    try:
        settings = load_settings()
    except ConfigError as exc:
        logger.error("Configuration failure: %s", sanitize_text(str(exc)))
        return 2

    job_name = args.job_name or settings.job_name
    stale_hours = args.hours if args.hours is not None else settings.job_stale_hours
    try:
        with SupabaseRestStore.from_settings(settings, logger) as store:
            report = check_job_health(
                store,
                job_name,
                now=datetime.now(UTC),
                stale_hours=stale_hours,
                limit=args.limit,
            )
    except ConfigError as exc:
        console.print(f"Error: {sanitize_text(str(exc))}", markup=False)
        return 1
    except StoreError as exc:
        logger.error("Failed loading job runs: %s", sanitize_text(str(exc)))
        return 4

    if args.json:
        console.print_json(json.dumps(report.model_dump(), default=json_default))
    else:
        _print_report(console, job_name, report)

    if args.strict and report.stale:
        return 3
    return 0


if __name__ == "__main__":
    sys.exit(main())
