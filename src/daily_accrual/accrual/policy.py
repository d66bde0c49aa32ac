"""Crediting policy selection and accrual arithmetic."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Literal

CreditPolicy = Literal["daily_credit", "completion_only"]

_HUNDRED = Decimal("100")


def utc_start_of_day(value: datetime) -> datetime:
    """Midnight UTC of the calendar day containing ``value``."""
    current = value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)
    return current.replace(hour=0, minute=0, second=0, microsecond=0)


def next_accrual_time(today: datetime) -> datetime:
    return utc_start_of_day(today) + timedelta(days=1)


def select_credit_policy(
    start_date: datetime,
    cutover: datetime,
    *,
    force_completion_only: bool = False,
) -> CreditPolicy:
    """Positions started at or after the cutover are paid only at completion."""
    if force_completion_only:
        return "completion_only"
    return "completion_only" if start_date >= cutover else "daily_credit"


def daily_profit_amount(principal: Decimal, daily_profit_percent: Decimal) -> Decimal:
    """One day of profit: ``principal * daily_profit / 100``."""
    return principal * daily_profit_percent / _HUNDRED
