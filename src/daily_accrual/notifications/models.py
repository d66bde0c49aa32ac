"""Payloads carried by investment notification emails."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class IncrementEmail(BaseModel):
    """Sent after a daily-credit accrual when increment emails are enabled."""

    plan_name: str
    day: int
    duration: int
    daily_amount: Decimal
    total_earned: Decimal
    principal: Decimal
    next_accrual_utc: datetime | None = None


class CompletionEmail(BaseModel):
    """Sent once a position completes and its principal is unlocked."""

    plan_name: str
    duration: int
    total_earned: Decimal
    principal: Decimal
    end_date_utc: datetime
