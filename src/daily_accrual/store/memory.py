"""In-memory store used for offline fixture rehearsal."""

from __future__ import annotations

import copy
import json
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..exceptions import StoreConflictError, StoreError
from ..models import (
    CompletedInvestment,
    InvestmentPosition,
    InvestmentReturn,
    JobRun,
    UserBalance,
    UserContact,
)
from .base import AccrualStore, RowId

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class InMemoryStore(AccrualStore):
    """Dict-backed tables with the same filter and uniqueness rules as the database."""

    def __init__(
        self,
        investments: list[dict[str, Any]] | None = None,
        users: list[dict[str, Any]] | None = None,
    ) -> None:
        self.investments: dict[str, InvestmentPosition] = {}
        self.users: dict[str, dict[str, Any]] = {}
        self.returns: list[InvestmentReturn] = []
        self.archive: dict[str, CompletedInvestment] = {}
        self.job_runs: list[JobRun] = []
        self.locks: dict[str, dict[str, Any]] = {}
        self._next_job_run_id = 0
        for row in investments or []:
            self.add_investment(row)
        for row in users or []:
            self.add_user(row)

    @classmethod
    def from_fixture(cls, path: Path) -> InMemoryStore:
        """Seed a store from a JSON file with ``investments`` and ``users`` lists."""
        if not path.exists():
            raise StoreError(f"Fixture file does not exist: {path}")
        try:
            with path.open("r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreError(f"Failed reading {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise StoreError("Fixture JSON must be an object with 'investments' and 'users'.")
        investments = payload.get("investments", [])
        users = payload.get("users", [])
        if not isinstance(investments, list) or not isinstance(users, list):
            raise StoreError("Fixture 'investments' and 'users' must be lists.")
        return cls(investments=investments, users=users)

    def add_investment(self, row: dict[str, Any]) -> InvestmentPosition:
        position = InvestmentPosition.model_validate(row)
        self.investments[str(position.id)] = position
        return position

    def add_user(self, row: dict[str, Any]) -> None:
        user = dict(row)
        user["balance"] = Decimal(str(user.get("balance") or 0))
        user["active_deposits"] = Decimal(str(user.get("active_deposits") or 0))
        self.users[str(user["id"])] = user

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of every table, for before/after comparisons."""
        return copy.deepcopy(
            {
                "investments": {key: pos.model_dump() for key, pos in self.investments.items()},
                "users": self.users,
                "returns": [row.model_dump() for row in self.returns],
                "archive": {key: row.model_dump() for key, row in self.archive.items()},
                "job_runs": [row.model_dump() for row in self.job_runs],
                "locks": self.locks,
            }
        )

    def position(self, position_id: RowId) -> InvestmentPosition:
        return self.investments[str(position_id)]

    def balance_of(self, user_id: RowId) -> Decimal:
        return self.users[str(user_id)]["balance"]

    # -- AccrualStore ------------------------------------------------------

    def fetch_eligible_positions(self, today: datetime) -> list[InvestmentPosition]:
        eligible = []
        for position in self.investments.values():
            if position.status != "active":
                continue
            if (
                position.last_return_applied is None
                or position.last_return_applied < today
                or (position.first_profit_date is not None and position.first_profit_date <= today)
            ):
                eligible.append(position.model_copy(deep=True))
        return eligible

    def get_user_balance(self, user_id: RowId) -> UserBalance | None:
        user = self.users.get(str(user_id))
        return UserBalance.model_validate(user) if user is not None else None

    def update_user_balance(
        self,
        user_id: RowId,
        *,
        balance: Decimal | None = None,
        active_deposits: Decimal | None = None,
    ) -> None:
        user = self.users.get(str(user_id))
        if user is None:
            return
        if balance is not None:
            user["balance"] = balance
        if active_deposits is not None:
            user["active_deposits"] = active_deposits

    def get_user_contact(self, user_id: RowId) -> UserContact | None:
        user = self.users.get(str(user_id))
        return UserContact.model_validate(user) if user is not None else None

    def update_position(self, position_id: RowId, changes: dict[str, Any]) -> None:
        key = str(position_id)
        current = self.investments.get(key)
        if current is None:
            return
        known = {name: value for name, value in changes.items() if name in InvestmentPosition.model_fields}
        self.investments[key] = self._parse(InvestmentPosition, {**current.model_dump(), **known})

    def insert_return(self, row: InvestmentReturn) -> None:
        self.returns.append(row.model_copy())

    def archive_exists(self, original_investment_id: RowId) -> bool:
        return str(original_investment_id) in self.archive

    def insert_archive(self, row: CompletedInvestment) -> None:
        key = str(row.original_investment_id)
        if key in self.archive:
            raise StoreConflictError(f"completed_investments already has {key}")
        self.archive[key] = row.model_copy()

    def delete_archive(self, original_investment_id: RowId) -> None:
        self.archive.pop(str(original_investment_id), None)

    def insert_job_run(self, row: JobRun) -> RowId | None:
        self._next_job_run_id += 1
        self.job_runs.append(row.model_copy(update={"id": self._next_job_run_id}))
        return self._next_job_run_id

    def update_job_run(self, run_id: RowId, changes: dict[str, Any]) -> None:
        for index, run in enumerate(self.job_runs):
            if run.id == run_id:
                self.job_runs[index] = self._parse(JobRun, {**run.model_dump(), **changes})
                return

    def list_job_runs(
        self,
        job_name: str,
        *,
        limit: int = 10,
        started_since: datetime | None = None,
    ) -> list[JobRun]:
        runs = [
            run
            for run in self.job_runs
            if run.job_name == job_name
            and (
                started_since is None
                or (run.started_at is not None and run.started_at >= started_since)
            )
        ]
        runs.sort(key=lambda run: run.started_at or _EPOCH, reverse=True)
        return runs[:limit]

    def acquire_run_lock(
        self,
        job_name: str,
        holder: str,
        *,
        now: datetime,
        ttl_seconds: int,
    ) -> bool:
        current = self.locks.get(job_name)
        if current is not None and now - current["acquired_at"] < timedelta(seconds=ttl_seconds):
            return False
        self.locks[job_name] = {"holder": holder, "acquired_at": now}
        return True

    def release_run_lock(self, job_name: str, holder: str) -> None:
        current = self.locks.get(job_name)
        if current is not None and current["holder"] == holder:
            del self.locks[job_name]

    def list_positions(self, status: str = "active") -> list[InvestmentPosition]:
        return [
            position.model_copy(deep=True)
            for position in self.investments.values()
            if position.status == status
        ]

    def list_archive(self, *, limit: int = 5000) -> list[CompletedInvestment]:
        rows = sorted(self.archive.values(), key=lambda row: row.completed_at)
        return [row.model_copy() for row in rows[:limit]]

    def list_active_principals(self, user_id: RowId) -> list[Decimal]:
        return [
            position.principal_amount
            for position in self.investments.values()
            if str(position.user_id) == str(user_id) and position.status == "active"
        ]

    @staticmethod
    def _parse(model: Any, row: dict[str, Any]) -> Any:
        try:
            return model.model_validate(row)
        except ValidationError as exc:
            raise StoreError(f"Rejected {model.__name__} row: {exc}") from exc
