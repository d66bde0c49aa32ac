"""Recompute a user's locked principal from their active positions."""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel

from .log_setup import JobEventLogger
from .store.base import AccrualStore, RowId


class ReconciliationResult(BaseModel):
    user_id: int | str
    status: Literal["ok", "drift", "applied", "user_not_found"]
    current_active_deposits: Decimal | None = None
    expected_active_deposits: Decimal | None = None
    diff: Decimal | None = None


def reconcile_active_deposits(
    store: AccrualStore,
    user_id: RowId,
    events: JobEventLogger,
    *,
    apply: bool = False,
) -> ReconciliationResult:
    """Compare ``active_deposits`` with the sum of active principals; write it only when ``apply``."""
    user = store.get_user_balance(user_id)
    if user is None:
        events.emit("user_not_found", user=user_id)
        return ReconciliationResult(user_id=user_id, status="user_not_found")

    expected = sum(store.list_active_principals(user_id), Decimal("0"))
    current = user.active_deposits
    diff = expected - current
    events.emit(
        "computed",
        user=user_id,
        current_active_deposits=current,
        expected_active_deposits=expected,
    )
    result = ReconciliationResult(
        user_id=user_id,
        status="ok",
        current_active_deposits=current,
        expected_active_deposits=expected,
        diff=diff,
    )
    if diff == 0:
        events.emit("ok", user=user_id)
        return result
    if not apply:
        events.emit("dry_run", user=user_id, diff=diff)
        return result.model_copy(update={"status": "drift"})

    store.update_user_balance(user_id, active_deposits=expected)
    events.emit("applied", user=user_id, diff=diff, active_deposits=expected)
    return result.model_copy(update={"status": "applied"})
