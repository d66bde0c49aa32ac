"""Typed row models for the tables the accrual job reads and writes."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_utc(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)
    return value


def _money(value: Any) -> Any:
    # Store numerics arrive as strings, floats or null.
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, float):
        return Decimal(str(value))
    return value


class InvestmentPosition(BaseModel):
    """One user's locked principal under an investment plan."""

    model_config = ConfigDict(extra="ignore")

    id: int | str
    user_id: int | str
    status: Literal["active", "completed"] = "active"
    principal_amount: Decimal = Decimal("0")
    daily_profit: Decimal = Field(default=Decimal("0"), description="Percent of principal per day")
    plan_duration: int = 0
    days_elapsed: int = 0
    total_earned: Decimal = Decimal("0")
    start_date: datetime
    first_profit_date: datetime | None = None
    last_return_applied: datetime | None = None
    plan_name: str | None = None

    @field_validator("principal_amount", "daily_profit", "total_earned", mode="before")
    @classmethod
    def coerce_money(cls, value: Any) -> Any:
        return _money(value)

    @field_validator("plan_duration", "days_elapsed", mode="before")
    @classmethod
    def coerce_count(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("start_date", "first_profit_date", "last_return_applied", mode="before")
    @classmethod
    def ensure_timezone_aware(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip() == "":
            return None
        return _as_utc(value)

    @field_validator("start_date", "first_profit_date", "last_return_applied", mode="after")
    @classmethod
    def normalize_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @property
    def display_plan_name(self) -> str:
        return self.plan_name or "Investment Plan"


class UserBalance(BaseModel):
    """Liquid balance and locked principal for one user."""

    model_config = ConfigDict(extra="ignore")

    id: int | str
    balance: Decimal = Decimal("0")
    active_deposits: Decimal = Decimal("0")

    @field_validator("balance", "active_deposits", mode="before")
    @classmethod
    def coerce_money(cls, value: Any) -> Any:
        return _money(value)


class UserContact(BaseModel):
    """Minimal user record needed to address a notification."""

    model_config = ConfigDict(extra="ignore")

    id: int | str
    email: str | None = None
    username: str | None = None


class InvestmentReturn(BaseModel):
    """Append-only ledger row written for every accrual."""

    investment_id: int | str
    user_id: int | str
    amount: Decimal
    return_date: datetime
    created_at: datetime


class CompletedInvestment(BaseModel):
    """Write-once snapshot of a position at completion."""

    model_config = ConfigDict(extra="ignore")

    original_investment_id: int | str
    user_id: int | str
    plan_name: str | None = None
    daily_profit: Decimal
    duration: int
    principal_amount: Decimal
    total_earned: Decimal
    start_date: datetime
    end_date: datetime
    completed_at: datetime

    @field_validator("daily_profit", "principal_amount", "total_earned", mode="before")
    @classmethod
    def coerce_money(cls, value: Any) -> Any:
        return _money(value)


class JobRun(BaseModel):
    """Audit row recorded for each job invocation."""

    model_config = ConfigDict(extra="ignore")

    id: int | str | None = None
    job_name: str
    source: str
    meta: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    success: bool | None = None
    processed_count: int | None = None
    completed_count: int | None = None
    total_applied: Decimal | None = None
    error_text: str | None = None

    @field_validator("started_at", "finished_at", mode="before")
    @classmethod
    def ensure_timezone_aware(cls, value: Any) -> Any:
        return _as_utc(value)

    @field_validator("started_at", "finished_at", mode="after")
    @classmethod
    def normalize_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @field_validator("total_applied", mode="before")
    @classmethod
    def coerce_money(cls, value: Any) -> Any:
        if value is None:
            return None
        return _money(value)
