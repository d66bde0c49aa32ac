"""PostgREST (Supabase) adapter for the accrual store."""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..exceptions import StoreConflictError, StoreError, StoreRequestError
from ..models import (
    CompletedInvestment,
    InvestmentPosition,
    InvestmentReturn,
    JobRun,
    UserBalance,
    UserContact,
)
from ..redaction import sanitize_text
from .base import AccrualStore, RowId

INVESTMENTS = "investments"
USERS = "users"
RETURNS = "investment_returns"
ARCHIVE = "completed_investments"
JOB_RUNS = "job_runs"
JOB_LOCKS = "job_locks"


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as the UTC ``...Z`` form used in filters and rows."""
    current = value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)
    return current.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def to_store_value(value: Any) -> Any:
    """Convert Python values into JSON-safe column values."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, dict):
        return {key: to_store_value(child) for key, child in value.items()}
    if isinstance(value, list):
        return [to_store_value(item) for item in value]
    return value


class SupabaseRestStore(AccrualStore):
    """Thin PostgREST client with retries, error categories and row models."""

    def __init__(
        self,
        url: str,
        service_role_key: str,
        logger: logging.Logger,
        *,
        rest_path: str = "/rest/v1",
        timeout_seconds: float = 15.0,
        max_retries: int = 1,
        retry_delay_seconds: float = 0.5,
        page_size: int = 1000,
    ) -> None:
        if not url or not service_role_key:
            raise StoreError("Store URL and service role key are required.")
        self.logger = logger
        self.rest_path = rest_path.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.page_size = page_size
        self._client = httpx.Client(
            base_url=url.rstrip("/"),
            timeout=timeout_seconds,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "User-Agent": "daily-accrual-job/0.1",
                "apikey": service_role_key,
                "Authorization": f"Bearer {service_role_key}",
            },
        )

    @classmethod
    def from_settings(cls, settings: Settings, logger: logging.Logger) -> SupabaseRestStore:
        url, key = settings.require_store_credentials()
        return cls(
            url,
            key,
            logger,
            rest_path=settings.store_rest_path,
            timeout_seconds=settings.store_timeout_seconds,
            max_retries=settings.store_max_retries,
        )

    def __enter__(self) -> SupabaseRestStore:
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close underlying HTTP client."""
        self._client.close()

    # -- positions ---------------------------------------------------------

    def fetch_eligible_positions(self, today: datetime) -> list[InvestmentPosition]:
        today_iso = format_timestamp(today)
        base_params = {
            "select": "*",
            "status": "eq.active",
            "or": (
                f"(last_return_applied.is.null,last_return_applied.lt.{today_iso},"
                f"first_profit_date.lte.{today_iso})"
            ),
            "order": "id.asc",
        }
        rows = self._request_pages(INVESTMENTS, base_params)
        return [self._parse(InvestmentPosition, row) for row in rows]

    def list_positions(self, status: str = "active") -> list[InvestmentPosition]:
        rows = self._request_pages(
            INVESTMENTS,
            {"select": "*", "status": f"eq.{status}", "order": "id.asc"},
        )
        return [self._parse(InvestmentPosition, row) for row in rows]

    def update_position(self, position_id: RowId, changes: dict[str, Any]) -> None:
        self._request_rows(
            "PATCH",
            INVESTMENTS,
            params={"id": f"eq.{position_id}"},
            json_body=to_store_value(changes),
        )

    def list_active_principals(self, user_id: RowId) -> list[Decimal]:
        rows = self._request_rows(
            "GET",
            INVESTMENTS,
            params={
                "select": "principal_amount",
                "user_id": f"eq.{user_id}",
                "status": "eq.active",
            },
        )
        return [Decimal(str(row.get("principal_amount") or 0)) for row in rows]

    # -- users -------------------------------------------------------------

    def get_user_balance(self, user_id: RowId) -> UserBalance | None:
        row = self._first_row(USERS, select="id,balance,active_deposits", id=user_id)
        return self._parse(UserBalance, row) if row is not None else None

    def update_user_balance(
        self,
        user_id: RowId,
        *,
        balance: Decimal | None = None,
        active_deposits: Decimal | None = None,
    ) -> None:
        changes: dict[str, Any] = {}
        if balance is not None:
            changes["balance"] = balance
        if active_deposits is not None:
            changes["active_deposits"] = active_deposits
        if not changes:
            return
        self._request_rows(
            "PATCH",
            USERS,
            params={"id": f"eq.{user_id}"},
            json_body=to_store_value(changes),
        )

    def get_user_contact(self, user_id: RowId) -> UserContact | None:
        row = self._first_row(USERS, select="id,email,username", id=user_id)
        return self._parse(UserContact, row) if row is not None else None

    # -- ledger and archive ------------------------------------------------

    def insert_return(self, row: InvestmentReturn) -> None:
        self._request_rows("POST", RETURNS, json_body=to_store_value(row.model_dump()))

    def archive_exists(self, original_investment_id: RowId) -> bool:
        row = self._first_row(
            ARCHIVE,
            select="id",
            original_investment_id=original_investment_id,
        )
        return row is not None

    def insert_archive(self, row: CompletedInvestment) -> None:
        self._request_rows("POST", ARCHIVE, json_body=to_store_value(row.model_dump()))

    def list_archive(self, *, limit: int = 5000) -> list[CompletedInvestment]:
        rows = self._request_rows(
            "GET",
            ARCHIVE,
            params={"select": "*", "order": "completed_at.asc", "limit": limit},
        )
        return [self._parse(CompletedInvestment, row) for row in rows]

    def delete_archive(self, original_investment_id: RowId) -> None:
        self._request_rows(
            "DELETE",
            ARCHIVE,
            params={"original_investment_id": f"eq.{original_investment_id}"},
        )

    # -- job runs and lock -------------------------------------------------

    def insert_job_run(self, row: JobRun) -> RowId | None:
        payload = to_store_value(row.model_dump(exclude_none=True, exclude={"id"}))
        rows = self._request_rows(
            "POST",
            JOB_RUNS,
            params={"select": "id"},
            json_body=payload,
            prefer="return=representation",
        )
        return rows[0].get("id") if rows else None

    def update_job_run(self, run_id: RowId, changes: dict[str, Any]) -> None:
        self._request_rows(
            "PATCH",
            JOB_RUNS,
            params={"id": f"eq.{run_id}"},
            json_body=to_store_value(changes),
        )

    def list_job_runs(
        self,
        job_name: str,
        *,
        limit: int = 10,
        started_since: datetime | None = None,
    ) -> list[JobRun]:
        params: dict[str, Any] = {
            "select": "*",
            "job_name": f"eq.{job_name}",
            "order": "started_at.desc",
            "limit": limit,
        }
        if started_since is not None:
            params["started_at"] = f"gte.{format_timestamp(started_since)}"
        return [self._parse(JobRun, row) for row in self._request_rows("GET", JOB_RUNS, params=params)]

    def acquire_run_lock(
        self,
        job_name: str,
        holder: str,
        *,
        now: datetime,
        ttl_seconds: int,
    ) -> bool:
        lock_row = {"job_name": job_name, "holder": holder, "acquired_at": now}
        try:
            self._request_rows("POST", JOB_LOCKS, json_body=to_store_value(lock_row))
            return True
        except StoreConflictError:
            pass

        current = self._first_row(JOB_LOCKS, select="job_name,holder,acquired_at", job_name=job_name)
        if current is None:
            return self._insert_lock_once(lock_row)
        acquired_at = self._parse_timestamp(current.get("acquired_at"))
        if acquired_at is not None and now - acquired_at < timedelta(seconds=ttl_seconds):
            return False

        self.logger.warning(
            "Taking over abandoned run lock",
            extra={"job_name": job_name, "previous_holder": current.get("holder")},
        )
        self._request_rows(
            "DELETE",
            JOB_LOCKS,
            params={"job_name": f"eq.{job_name}", "holder": f"eq.{current.get('holder')}"},
        )
        return self._insert_lock_once(lock_row)

    def release_run_lock(self, job_name: str, holder: str) -> None:
        self._request_rows(
            "DELETE",
            JOB_LOCKS,
            params={"job_name": f"eq.{job_name}", "holder": f"eq.{holder}"},
        )

    # -- internals ---------------------------------------------------------

    def _insert_lock_once(self, lock_row: dict[str, Any]) -> bool:
        try:
            self._request_rows("POST", JOB_LOCKS, json_body=to_store_value(lock_row))
        except StoreConflictError:
            return False
        return True

    def _request_pages(self, table: str, base_params: dict[str, Any]) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        offset = 0
        while True:
            params = {**base_params, "limit": self.page_size, "offset": offset}
            page = self._request_rows("GET", table, params=params)
            rows.extend(page)
            if len(page) < self.page_size:
                return rows
            offset += self.page_size

    def _first_row(self, table: str, *, select: str, **filters: Any) -> dict[str, Any] | None:
        params: dict[str, Any] = {"select": select, "limit": 1}
        for column, value in filters.items():
            params[column] = f"eq.{value}"
        rows = self._request_rows("GET", table, params=params)
        return rows[0] if rows else None

    @staticmethod
    def _parse(model: Any, row: dict[str, Any]) -> Any:
        try:
            return model.model_validate(row)
        except ValidationError as exc:
            raise StoreError(f"Malformed {model.__name__} row: {exc}") from exc

    @staticmethod
    def _parse_timestamp(value: Any) -> datetime | None:
        if not isinstance(value, str) or not value.strip():
            return None
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed.astimezone(UTC) if parsed.tzinfo else parsed.replace(tzinfo=UTC)

    def _request_rows(
        self,
        method: str,
        table: str,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        body = self._request_json(method, table, params=params, json_body=json_body, prefer=prefer)
        if body is None:
            return []
        if isinstance(body, dict):
            return [body]
        if not isinstance(body, list) or not all(isinstance(item, dict) for item in body):
            raise StoreError(f"Unexpected {table} payload shape: {type(body).__name__}")
        return body

    def _request_json(
        self,
        method: str,
        table: str,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        prefer: str | None = None,
    ) -> Any:
        last_error: Exception | None = None
        url = f"{self.rest_path}/{table}"
        headers = {"Prefer": prefer} if prefer else None

        for attempt in range(self.max_retries + 1):
            try:
                response = self._client.request(
                    method=method,
                    url=url,
                    params=params,
                    json=json_body,
                    headers=headers,
                )
                if response.status_code in (401, 403):
                    raise StoreRequestError(
                        f"Store authentication failed with status {response.status_code}. "
                        "Verify the service role key.",
                        category="auth",
                        status_code=response.status_code,
                    )
                if response.status_code == 409:
                    raise StoreConflictError(
                        f"Store conflict on {table}: {sanitize_text(response.text[:300])}"
                    )
                response.raise_for_status()
                if response.status_code == 204 or not response.content:
                    return None
                try:
                    return response.json()
                except ValueError as exc:
                    raise StoreRequestError(
                        "Response was not valid JSON.",
                        category="unknown",
                        status_code=response.status_code,
                    ) from exc
            except httpx.HTTPStatusError as exc:
                last_error = exc
                # Never retry client errors (4xx) except 429 rate-limit.
                sc = exc.response.status_code
                if 400 <= sc < 500 and sc != 429:
                    category = "validation" if sc in {400, 404, 422} else "unknown"
                    raise StoreRequestError(
                        f"Store client error {sc} on {table}: "
                        f"{sanitize_text(exc.response.text[:300])}",
                        category=category,
                        status_code=sc,
                    ) from exc
                if attempt < self.max_retries:
                    self.logger.warning(
                        "Store request failed (HTTP %d); retrying",
                        sc,
                        extra={"attempt": attempt + 1, "max_retries": self.max_retries},
                    )
                    time.sleep(self.retry_delay_seconds)
                    continue
                category = "rate_limit" if sc == 429 else "server" if sc >= 500 else "unknown"
                raise StoreRequestError(
                    f"Store request on {table} failed with status {sc}: "
                    f"{sanitize_text(exc.response.text[:300])}",
                    category=category,
                    status_code=sc,
                ) from exc
            except httpx.HTTPError as exc:
                last_error = exc
                if attempt < self.max_retries:
                    self.logger.warning(
                        "Store request failed (%s); retrying",
                        type(exc).__name__,
                        extra={"attempt": attempt + 1, "max_retries": self.max_retries},
                    )
                    time.sleep(self.retry_delay_seconds)
                    continue
                raise StoreRequestError(
                    f"Store request on {table} failed: {sanitize_text(str(exc))}",
                    category="network",
                    status_code=None,
                ) from exc

        raise StoreRequestError(
            "Store request failed after retries: "
            f"{sanitize_text(str(last_error)) if last_error else 'unknown error'}",
            category="unknown",
            status_code=None,
        )
