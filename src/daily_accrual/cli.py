"""Run the daily investment accrual job once (dry-run unless --live)."""

from __future__ import annotations

import argparse
import logging
import sys
import uuid
from datetime import UTC, datetime
from pathlib import Path

from rich.console import Console
from rich.table import Table

from .accrual import JobMetrics, JobOptions, has_run_today, run_daily_investment_job
from .config import Settings, load_settings
from .exceptions import ConfigError, JournalError, NotificationError, StoreError
from .journal import JournalWriter
from .log_setup import JobEventLogger, setup_logger
from .notifications import Notifier, NullNotifier, ResendNotifier
from .redaction import sanitize_text
from .store import AccrualStore, InMemoryStore, SupabaseRestStore


def parse_args() -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Apply one day of investment profit and complete finished plans.",
    )
    parser.add_argument(
        "--live",
        action="store_true",
        help="Write changes to the store. Without this flag the run is a dry run.",
    )
    parser.add_argument("--source", default=None, help="Run source recorded on the job run row.")
    parser.add_argument(
        "--fixture",
        type=Path,
        default=None,
        help="Run against an in-memory store seeded from a JSON fixture.",
    )
    parser.add_argument(
        "--skip-if-ran-today",
        action="store_true",
        help="Exit without running when a job run already started today (UTC).",
    )
    parser.add_argument(
        "--send-increment-emails",
        action=argparse.BooleanOptionalAction,
        default=None,
    )
    parser.add_argument(
        "--completion-emails",
        action=argparse.BooleanOptionalAction,
        default=None,
    )
    parser.add_argument(
        "--force-completion-only",
        action="store_true",
        default=None,
        help="Withhold daily credits for every position until completion.",
    )
    return parser.parse_args()


def _build_store(
    args: argparse.Namespace,
    settings: Settings,
    logger: logging.Logger,
) -> AccrualStore:
    if args.fixture is not None:
        return InMemoryStore.from_fixture(args.fixture)
    return SupabaseRestStore.from_settings(settings, logger)


def _build_notifier(settings: Settings, options: JobOptions, logger: logging.Logger) -> Notifier:
    if options.dry_run or not settings.resend_api_key:
        return NullNotifier()
    try:
        return ResendNotifier.from_settings(settings, logger)
    except NotificationError as exc:
        logger.warning("Email disabled: %s", exc)
        return NullNotifier()


def _print_summary(console: Console, metrics: JobMetrics, options: JobOptions) -> None:
    table = Table(title="Daily Accrual Run (dry run)" if options.dry_run else "Daily Accrual Run")
    table.add_column("Processed")
    table.add_column("Completed")
    table.add_column("Total Applied")
    table.add_row(str(metrics.processed), str(metrics.completed), str(metrics.total_applied))
    console.print(table)
    console.print(
        f"processed={metrics.processed} completed={metrics.completed} "
        f"total_applied={metrics.total_applied} dry_run={options.dry_run}"
    )


def main() -> int:
    """Run the accrual job and print its metrics."""
    args = parse_args()
    logger = setup_logger()
    console = Console()
    session_id = uuid.uuid4().hex[:12]

    try:
        settings = load_settings()
    except ConfigError as exc:
        logger.error("Configuration failure: %s", sanitize_text(str(exc)))
        return 2

    options = JobOptions.from_settings(
        settings,
        dry_run=not args.live,
        source=args.source or ("fixture" if args.fixture is not None else None),
        send_increment_emails=args.send_increment_emails,
        send_completion_emails=args.completion_emails,
        force_credit_on_completion_only=args.force_completion_only,
    )

    try:
        journal = JournalWriter(journal_dir=settings.journal_dir, session_id=session_id)
        journal.write_event(
            "startup",
            payload={**settings.safe_summary(), **options.run_meta(), "fixture": args.fixture},
            metadata={"session_id": session_id},
        )
    except JournalError as exc:
        logger.error("Failed to initialize journal: %s", sanitize_text(str(exc)))
        return 3

    try:
        store = _build_store(args, settings, logger)
    except (ConfigError, StoreError) as exc:
        console.print(f"Error: {sanitize_text(str(exc))}", markup=False)
        journal.write_event("startup_failure", payload={"error": str(exc)})
        return 1

    events = JobEventLogger(logger, job_name=options.job_name, journal=journal)
    notifier = _build_notifier(settings, options, logger)
    try:
        if args.skip_if_ran_today:
            try:
                previous = has_run_today(store, options.job_name, datetime.now(UTC))
            except StoreError as exc:
                events.emit("fetch_error", error=str(exc))
                console.print(f"Error: {sanitize_text(str(exc))}", markup=False)
                return 4
            if previous is not None:
                events.emit(
                    "skip_already_ran_today",
                    job_run_id=previous.id,
                    started_at=previous.started_at,
                )
                console.print(f"Skipped: {options.job_name} already ran today.")
                return 0

        metrics = run_daily_investment_job(options, store, events, notifier=notifier)
        _print_summary(console, metrics, options)
        journal.write_event(
            "shutdown",
            payload=metrics.model_dump(),
            metadata={"session_id": session_id},
        )
    finally:
        notifier.close()
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
