"""PostgREST store adapter: filters, paging, retries and error categories."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import httpx
import pytest

from daily_accrual.exceptions import StoreConflictError, StoreError, StoreRequestError
from daily_accrual.models import CompletedInvestment, JobRun
from daily_accrual.store import SupabaseRestStore
from daily_accrual.store.rest import format_timestamp, to_store_value

BASE_URL = "https://project.supabase.co"


class _FakeTransport:
    """Replays queued responses and records each request."""

    def __init__(self, responses: list[httpx.Response]) -> None:
        self.responses = responses
        self.calls: list[dict[str, Any]] = []

    def request(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        self.calls.append(
            {"method": method, "url": url, "params": params, "json": json, "headers": headers}
        )
        return self.responses.pop(0)


def _response(status_code: int, body: Any = None, text: str | None = None) -> httpx.Response:
    request = httpx.Request("GET", f"{BASE_URL}/rest/v1/test")
    if body is not None:
        return httpx.Response(status_code, json=body, request=request)
    if text is not None:
        return httpx.Response(status_code, text=text, request=request)
    return httpx.Response(status_code, request=request)


def _store(monkeypatch: Any, responses: list[httpx.Response], **kwargs: Any) -> tuple[
    SupabaseRestStore, _FakeTransport
]:
    store = SupabaseRestStore(
        BASE_URL,
        "service-role-key",
        logging.getLogger("test_rest_store"),
        retry_delay_seconds=0,
        **kwargs,
    )
    transport = _FakeTransport(responses)
    monkeypatch.setattr(store._client, "request", transport.request)
    return store, transport


def _row(position_id: int) -> dict[str, Any]:
    return {
        "id": position_id,
        "user_id": 10,
        "status": "active",
        "principal_amount": "1000",
        "daily_profit": 2,
        "plan_duration": 30,
        "days_elapsed": 0,
        "total_earned": None,
        "start_date": "2025-08-01T00:00:00+00:00",
        "first_profit_date": None,
        "last_return_applied": None,
    }


def test_format_timestamp_uses_millisecond_utc_suffix() -> None:
    value = datetime(2025, 10, 10, 6, 30, 1, 123456, tzinfo=UTC)
    assert format_timestamp(value) == "2025-10-10T06:30:01.123Z"
    assert to_store_value({"amount": Decimal("20.5"), "at": value}) == {
        "amount": "20.5",
        "at": "2025-10-10T06:30:01.123Z",
    }


def test_fetch_eligible_positions_filters_and_pages(monkeypatch: Any) -> None:
    store, transport = _store(
        monkeypatch,
        [_response(200, [_row(1), _row(2)]), _response(200, [_row(3)])],
        page_size=2,
    )

    positions = store.fetch_eligible_positions(datetime(2025, 10, 10, tzinfo=UTC))

    assert [position.id for position in positions] == [1, 2, 3]
    assert positions[0].total_earned == Decimal("0")
    first, second = transport.calls
    assert first["method"] == "GET"
    assert first["url"] == "/rest/v1/investments"
    assert first["params"]["status"] == "eq.active"
    assert first["params"]["or"] == (
        "(last_return_applied.is.null,last_return_applied.lt.2025-10-10T00:00:00.000Z,"
        "first_profit_date.lte.2025-10-10T00:00:00.000Z)"
    )
    assert first["params"]["offset"] == 0
    assert second["params"]["offset"] == 2


def test_malformed_row_raises_store_error(monkeypatch: Any) -> None:
    store, _ = _store(monkeypatch, [_response(200, [{"id": 1}])])
    with pytest.raises(StoreError):
        store.fetch_eligible_positions(datetime(2025, 10, 10, tzinfo=UTC))


def test_server_error_is_retried(monkeypatch: Any) -> None:
    store, transport = _store(
        monkeypatch,
        [_response(503, text="unavailable"), _response(200, [{"id": 10, "balance": "5"}])],
        max_retries=1,
    )

    user = store.get_user_balance(10)

    assert user is not None
    assert user.balance == Decimal("5")
    assert user.active_deposits == Decimal("0")
    assert len(transport.calls) == 2
    assert transport.calls[0]["params"]["id"] == "eq.10"


def test_server_error_after_retries_is_categorized(monkeypatch: Any) -> None:
    store, _ = _store(
        monkeypatch,
        [_response(500, text="boom"), _response(500, text="boom")],
        max_retries=1,
    )
    with pytest.raises(StoreRequestError) as exc_info:
        store.get_user_balance(10)
    assert exc_info.value.category == "server"
    assert exc_info.value.status_code == 500


def test_auth_failure_is_not_retried(monkeypatch: Any) -> None:
    store, transport = _store(monkeypatch, [_response(401, text="bad key")], max_retries=3)
    with pytest.raises(StoreRequestError) as exc_info:
        store.get_user_contact(10)
    assert exc_info.value.category == "auth"
    assert len(transport.calls) == 1


def test_validation_error_is_not_retried(monkeypatch: Any) -> None:
    store, transport = _store(monkeypatch, [_response(400, text="bad filter")], max_retries=3)
    with pytest.raises(StoreRequestError) as exc_info:
        store.update_position(1, {"days_elapsed": 1})
    assert exc_info.value.category == "validation"
    assert len(transport.calls) == 1


def test_transport_error_is_categorized_as_network(monkeypatch: Any) -> None:
    store = SupabaseRestStore(
        BASE_URL,
        "service-role-key",
        logging.getLogger("test_rest_store"),
        max_retries=0,
    )

    def _raise(**kwargs: Any) -> httpx.Response:
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(store._client, "request", _raise)
    with pytest.raises(StoreRequestError) as exc_info:
        store.list_active_principals(10)
    assert exc_info.value.category == "network"


def test_archive_insert_conflict_raises_conflict_error(monkeypatch: Any) -> None:
    store, transport = _store(monkeypatch, [_response(409, text="duplicate key value")])
    now = datetime(2025, 10, 10, tzinfo=UTC)
    row = CompletedInvestment(
        original_investment_id=1,
        user_id=10,
        daily_profit=Decimal("2"),
        duration=3,
        principal_amount=Decimal("1000"),
        total_earned=Decimal("60"),
        start_date=now - timedelta(days=3),
        end_date=now,
        completed_at=now,
    )

    with pytest.raises(StoreConflictError):
        store.insert_archive(row)
    assert transport.calls[0]["method"] == "POST"
    assert transport.calls[0]["url"] == "/rest/v1/completed_investments"
    assert transport.calls[0]["json"]["total_earned"] == "60"
    assert transport.calls[0]["json"]["end_date"] == "2025-10-10T00:00:00.000Z"


def test_update_user_balance_sends_only_given_columns(monkeypatch: Any) -> None:
    store, transport = _store(monkeypatch, [_response(204)])

    store.update_user_balance(10, active_deposits=Decimal("0"))

    assert transport.calls[0]["method"] == "PATCH"
    assert transport.calls[0]["json"] == {"active_deposits": "0"}


def test_insert_job_run_returns_representation_id(monkeypatch: Any) -> None:
    store, transport = _store(monkeypatch, [_response(201, [{"id": 42}])])

    run_id = store.insert_job_run(
        JobRun(
            job_name="daily-investments",
            source="cron",
            meta={"dry_run": False},
            started_at=datetime(2025, 10, 10, tzinfo=UTC),
        )
    )

    assert run_id == 42
    call = transport.calls[0]
    assert call["headers"] == {"Prefer": "return=representation"}
    assert "id" not in call["json"]
    assert call["json"]["started_at"] == "2025-10-10T00:00:00.000Z"


def test_run_lock_held_by_live_holder(monkeypatch: Any) -> None:
    now = datetime(2025, 10, 10, 6, 0, tzinfo=UTC)
    store, transport = _store(
        monkeypatch,
        [
            _response(409, text="duplicate key"),
            _response(
                200,
                [
                    {
                        "job_name": "daily-investments",
                        "holder": "other",
                        "acquired_at": "2025-10-10T05:50:00Z",
                    }
                ],
            ),
        ],
    )

    acquired = store.acquire_run_lock("daily-investments", "me", now=now, ttl_seconds=3600)

    assert acquired is False
    assert len(transport.calls) == 2


def test_run_lock_takes_over_abandoned_holder(monkeypatch: Any) -> None:
    now = datetime(2025, 10, 10, 6, 0, tzinfo=UTC)
    store, transport = _store(
        monkeypatch,
        [
            _response(409, text="duplicate key"),
            _response(
                200,
                [
                    {
                        "job_name": "daily-investments",
                        "holder": "other",
                        "acquired_at": "2025-10-10T01:00:00Z",
                    }
                ],
            ),
            _response(204),
            _response(201),
        ],
    )

    acquired = store.acquire_run_lock("daily-investments", "me", now=now, ttl_seconds=3600)

    assert acquired is True
    assert [call["method"] for call in transport.calls] == ["POST", "GET", "DELETE", "POST"]
    assert transport.calls[2]["params"]["holder"] == "eq.other"
    assert transport.calls[3]["json"]["holder"] == "me"


def test_list_job_runs_since_start_of_day(monkeypatch: Any) -> None:
    store, transport = _store(
        monkeypatch,
        [
            _response(
                200,
                [{"id": 1, "job_name": "daily-investments", "source": "cron", "success": True}],
            )
        ],
    )

    runs = store.list_job_runs(
        "daily-investments",
        limit=1,
        started_since=datetime(2025, 10, 10, tzinfo=UTC),
    )

    assert runs[0].success is True
    params = transport.calls[0]["params"]
    assert params["order"] == "started_at.desc"
    assert params["started_at"] == "gte.2025-10-10T00:00:00.000Z"


def test_missing_credentials_rejected() -> None:
    with pytest.raises(StoreError):
        SupabaseRestStore("", "key", logging.getLogger("test_rest_store"))


def test_list_positions_pages_by_status(monkeypatch: Any) -> None:
    store, transport = _store(
        monkeypatch,
        [_response(200, [_row(1), _row(2)]), _response(200, [])],
        page_size=2,
    )

    positions = store.list_positions("active")

    assert [position.id for position in positions] == [1, 2]
    assert transport.calls[0]["params"]["status"] == "eq.active"
    assert transport.calls[0]["params"]["order"] == "id.asc"
    assert transport.calls[1]["params"]["offset"] == 2


def test_list_archive_orders_oldest_first_with_limit(monkeypatch: Any) -> None:
    row = {
        "original_investment_id": 7,
        "user_id": 10,
        "daily_profit": "3.5",
        "duration": 7,
        "principal_amount": "5000",
        "total_earned": "1225",
        "start_date": "2025-10-03T00:00:00Z",
        "end_date": "2025-10-10T00:00:00Z",
        "completed_at": "2025-10-10T00:00:00Z",
    }
    store, transport = _store(monkeypatch, [_response(200, [row])])

    archived = store.list_archive(limit=5000)

    assert archived[0].total_earned == Decimal("1225")
    call = transport.calls[0]
    assert call["url"] == "/rest/v1/completed_investments"
    assert call["params"]["order"] == "completed_at.asc"
    assert call["params"]["limit"] == 5000
