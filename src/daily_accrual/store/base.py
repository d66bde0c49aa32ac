"""Store contract used by the accrual job."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any

from ..models import (
    CompletedInvestment,
    InvestmentPosition,
    InvestmentReturn,
    JobRun,
    UserBalance,
    UserContact,
)

RowId = int | str


class AccrualStore(ABC):
    """Row-level operations over positions, users, ledger, archive and job runs.

    Every method is a single store round trip; callers get no transaction
    spanning several calls.
    """

    @abstractmethod
    def fetch_eligible_positions(self, today: datetime) -> list[InvestmentPosition]:
        """Active positions not yet accrued today, or whose first profit date is due."""

    @abstractmethod
    def get_user_balance(self, user_id: RowId) -> UserBalance | None:
        """Return balance fields for a user, or None when the user does not exist."""

    @abstractmethod
    def update_user_balance(
        self,
        user_id: RowId,
        *,
        balance: Decimal | None = None,
        active_deposits: Decimal | None = None,
    ) -> None:
        """Overwrite whichever of balance and active deposits are given."""

    @abstractmethod
    def get_user_contact(self, user_id: RowId) -> UserContact | None:
        """Return the minimal user record used for notifications."""

    @abstractmethod
    def update_position(self, position_id: RowId, changes: dict[str, Any]) -> None:
        """Apply column changes to one investment row."""

    @abstractmethod
    def insert_return(self, row: InvestmentReturn) -> None:
        """Append one row to the investment return ledger."""

    @abstractmethod
    def archive_exists(self, original_investment_id: RowId) -> bool:
        """Whether a completed-investment snapshot exists for the position."""

    @abstractmethod
    def insert_archive(self, row: CompletedInvestment) -> None:
        """Insert a completed-investment snapshot.

        Raises StoreConflictError when a snapshot for the same
        ``original_investment_id`` already exists.
        """

    @abstractmethod
    def delete_archive(self, original_investment_id: RowId) -> None:
        """Remove a snapshot whose completion credit could not be written."""

    @abstractmethod
    def insert_job_run(self, row: JobRun) -> RowId | None:
        """Insert a job run row and return its id."""

    @abstractmethod
    def update_job_run(self, run_id: RowId, changes: dict[str, Any]) -> None:
        """Apply final metrics to a job run row."""

    @abstractmethod
    def list_job_runs(
        self,
        job_name: str,
        *,
        limit: int = 10,
        started_since: datetime | None = None,
    ) -> list[JobRun]:
        """Most recent job runs first."""

    @abstractmethod
    def acquire_run_lock(
        self,
        job_name: str,
        holder: str,
        *,
        now: datetime,
        ttl_seconds: int,
    ) -> bool:
        """Take the job-level lock; False when another live holder has it."""

    @abstractmethod
    def release_run_lock(self, job_name: str, holder: str) -> None:
        """Release the lock if ``holder`` still owns it."""

    @abstractmethod
    def list_positions(self, status: str = "active") -> list[InvestmentPosition]:
        """Every position with the given status, ordered by id."""

    @abstractmethod
    def list_archive(self, *, limit: int = 5000) -> list[CompletedInvestment]:
        """Completed-investment snapshots, oldest first."""

    @abstractmethod
    def list_active_principals(self, user_id: RowId) -> list[Decimal]:
        """Principal amounts of the user's active positions."""

    def close(self) -> None:
        """Release store resources."""
