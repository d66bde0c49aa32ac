"""Recompute a user's active deposits from their active positions."""

from __future__ import annotations

import argparse
import sys
import uuid

from rich.console import Console

from .config import load_settings
from .exceptions import ConfigError, JournalError, StoreError
from .journal import JournalWriter
from .log_setup import JobEventLogger, setup_logger
from .reconcile import reconcile_active_deposits
from .redaction import sanitize_text
from .store import SupabaseRestStore


def parse_args() -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Compare a user's active_deposits with the sum of their active principals.",
    )
    parser.add_argument("--user-id", required=True, help="User id to reconcile.")
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Write the recomputed value. Without this flag only the diff is reported.",
    )
    return parser.parse_args()


def main() -> int:
    """Reconcile one user and print the outcome."""
    args = parse_args()
    logger = setup_logger()
    console = Console()
    session_id = uuid.uuid4().hex[:12]

    try:
        settings = load_settings()
    except ConfigError as exc:
        logger.error("Configuration failure: %s", sanitize_text(str(exc)))
        return 2

    try:
        journal = JournalWriter(settings.journal_dir, session_id, prefix="reconcile")
    except JournalError as exc:
        logger.error("Failed to initialize journal: %s", sanitize_text(str(exc)))
        return 3

    events = JobEventLogger(logger, job_name="reconcile-active-deposits", journal=journal)
    user_id: int | str = int(args.user_id) if args.user_id.isdigit() else args.user_id
    try:
        with SupabaseRestStore.from_settings(settings, logger) as store:
            result = reconcile_active_deposits(store, user_id, events, apply=args.apply)
    except ConfigError as exc:
        console.print(f"Error: {sanitize_text(str(exc))}", markup=False)
        return 1
    except StoreError as exc:
        events.emit("store_error", user=user_id, error=str(exc))
        return 4

    if result.status == "user_not_found":
        console.print(f"User {user_id} not found.", markup=False)
        return 1
    console.print(
        f"user={result.user_id} status={result.status} "
        f"current={result.current_active_deposits} expected={result.expected_active_deposits} "
        f"diff={result.diff}",
        markup=False,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
