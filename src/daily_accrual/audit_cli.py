"""Audit stored earnings against the accrual formula."""

from __future__ import annotations

import argparse
import sys
import uuid

from rich.console import Console
from rich.table import Table

from .audit import EarningsAuditReport, audit_investment_returns
from .config import load_settings
from .exceptions import ConfigError, JournalError
from .journal import JournalWriter
from .log_setup import JobEventLogger, setup_logger
from .redaction import sanitize_text
from .store import SupabaseRestStore


def parse_args() -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Recompute expected investment earnings and report discrepancies.",
    )
    parser.add_argument(
        "--archive-limit",
        type=int,
        default=5000,
        help="Maximum completed-investment rows to check.",
    )
    parser.add_argument("--max-print", type=int, default=20)
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 3 when any discrepancy is found.",
    )
    return parser.parse_args()


def _print_report(console: Console, report: EarningsAuditReport, max_rows: int) -> None:
    console.print(
        f"active_checked={report.active_checked} completed_checked={report.completed_checked} "
        f"active_discrepancies={report.count('active')} "
        f"completed_discrepancies={report.count('completed')}",
        markup=False,
    )
    if not report.discrepancies:
        return
    table = Table(title="Earnings Discrepancies")
    table.add_column("Kind")
    table.add_column("Investment")
    table.add_column("User")
    table.add_column("Days")
    table.add_column("Expected")
    table.add_column("Reported")
    for item in report.discrepancies[:max_rows]:
        table.add_row(
            item.kind,
            str(item.investment_id),
            str(item.user_id),
            str(item.days),
            str(item.expected_total),
            str(item.reported_total),
        )
    console.print(table)


def main() -> int:
    """Run the earnings audit and print its report."""
    args = parse_args()
    logger = setup_logger()
    console = Console()
    session_id = uuid.uuid4().hex[:12]

    if args.archive_limit <= 0:
        logger.error("--archive-limit must be > 0.")
        return 2
    if args.max_print <= 0:
        logger.error("--max-print must be > 0.")
        return 2

    try:
        settings = load_settings()
    except ConfigError as exc:
        logger.error("Configuration failure: %s", sanitize_text(str(exc)))
        return 2

    try:
        journal = JournalWriter(settings.journal_dir, session_id, prefix="audit")
    except JournalError as exc:
        logger.error("Failed to initialize journal: %s", sanitize_text(str(exc)))
        return 3

    events = JobEventLogger(logger, job_name="audit-investment-returns", journal=journal)
    try:
        with SupabaseRestStore.from_settings(settings, logger) as store:
            report = audit_investment_returns(store, events, archive_limit=args.archive_limit)
    except ConfigError as exc:
        console.print(f"Error: {sanitize_text(str(exc))}", markup=False)
        return 1

    _print_report(console, report, args.max_print)
    if report.fetch_errors:
        return 4
    if args.strict and report.discrepancies:
        return 3
    return 0


if __name__ == "__main__":
    sys.exit(main())
