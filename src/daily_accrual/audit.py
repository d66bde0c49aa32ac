"""Recompute expected earnings from the accrual formula and report mismatches."""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from .accrual.policy import daily_profit_amount
from .exceptions import StoreError
from .log_setup import JobEventLogger
from .store.base import AccrualStore

DEFAULT_TOLERANCE = Decimal("0.000001")


class EarningsDiscrepancy(BaseModel):
    kind: Literal["active", "completed"]
    investment_id: int | str
    user_id: int | str
    days: int
    daily_amount: Decimal
    expected_total: Decimal
    reported_total: Decimal


class EarningsAuditReport(BaseModel):
    active_checked: int = 0
    completed_checked: int = 0
    discrepancies: list[EarningsDiscrepancy] = Field(default_factory=list)
    fetch_errors: list[str] = Field(default_factory=list)

    def count(self, kind: str) -> int:
        return sum(1 for item in self.discrepancies if item.kind == kind)

    @property
    def clean(self) -> bool:
        return not self.discrepancies and not self.fetch_errors


def audit_investment_returns(
    store: AccrualStore,
    events: JobEventLogger,
    *,
    archive_limit: int = 5000,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> EarningsAuditReport:
    """Check ``total_earned`` against ``days * principal * daily_profit / 100``.

    Active positions are checked at ``days_elapsed`` days, archive rows at
    their full ``duration``. A failed fetch of either table is reported and
    the other table is still audited.
    """
    report = EarningsAuditReport()

    try:
        positions = store.list_positions("active")
    except StoreError as exc:
        events.emit("fetch_active_error", error=str(exc))
        report.fetch_errors.append(f"active: {exc}")
        positions = []
    for position in positions:
        report.active_checked += 1
        daily = daily_profit_amount(position.principal_amount, position.daily_profit)
        expected = daily * position.days_elapsed
        if abs(expected - position.total_earned) <= tolerance:
            continue
        item = EarningsDiscrepancy(
            kind="active",
            investment_id=position.id,
            user_id=position.user_id,
            days=position.days_elapsed,
            daily_amount=daily,
            expected_total=expected,
            reported_total=position.total_earned,
        )
        report.discrepancies.append(item)
        events.emit(
            "discrepancy_active",
            investment=position.id,
            user=position.user_id,
            days_elapsed=position.days_elapsed,
            daily_amount=daily,
            expected_total=expected,
            reported_total=position.total_earned,
        )

    try:
        archived = store.list_archive(limit=archive_limit)
    except StoreError as exc:
        events.emit("fetch_completed_error", error=str(exc))
        report.fetch_errors.append(f"completed: {exc}")
        archived = []
    for row in archived:
        report.completed_checked += 1
        daily = daily_profit_amount(row.principal_amount, row.daily_profit)
        expected = daily * row.duration
        if abs(expected - row.total_earned) <= tolerance:
            continue
        report.discrepancies.append(
            EarningsDiscrepancy(
                kind="completed",
                investment_id=row.original_investment_id,
                user_id=row.user_id,
                days=row.duration,
                daily_amount=daily,
                expected_total=expected,
                reported_total=row.total_earned,
            )
        )
        events.emit(
            "discrepancy_completed",
            investment=row.original_investment_id,
            user=row.user_id,
            duration=row.duration,
            daily_amount=daily,
            expected_total=expected,
            reported_total=row.total_earned,
        )

    events.emit(
        "summary",
        active_checked=report.active_checked,
        completed_checked=report.completed_checked,
        active_discrepancies=report.count("active"),
        completed_discrepancies=report.count("completed"),
    )
    return report
