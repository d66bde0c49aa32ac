"""Daily investment accrual job runner."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from ..exceptions import StoreConflictError, StoreError
from ..log_setup import JobEventLogger
from ..models import CompletedInvestment, InvestmentPosition, InvestmentReturn, JobRun
from ..notifications.base import Notifier, NullNotifier
from ..notifications.models import CompletionEmail, IncrementEmail
from ..store.base import AccrualStore, RowId
from .models import JobMetrics, JobOptions
from .policy import (
    CreditPolicy,
    daily_profit_amount,
    next_accrual_time,
    select_credit_policy,
    utc_start_of_day,
)

_ZERO = Decimal("0")


class DailyAccrualJob:
    """Apply one day of profit to every eligible position and complete finished plans.

    Positions are processed sequentially. Each store call is its own round
    trip, so a crash mid-position can leave partial writes; re-runs stay safe
    because accrual is skipped once ``last_return_applied`` reaches today and
    completion is skipped once an archive row exists for the position.

    In dry-run mode every decision and counter is computed and logged but no
    store row is written (including the job run row and the run lock).
    """

    def __init__(
        self,
        store: AccrualStore,
        events: JobEventLogger,
        options: JobOptions | None = None,
        notifier: Notifier | None = None,
        now_provider: Callable[[], datetime] | None = None,
        holder_id: str | None = None,
    ) -> None:
        self.store = store
        self.events = events
        self.options = options or JobOptions()
        self.notifier = notifier or NullNotifier()
        self._now_provider = now_provider or (lambda: datetime.now(UTC))
        self.holder_id = holder_id or uuid.uuid4().hex[:12]
        self._lock_held = False

    def run(self) -> JobMetrics:
        """Run the job once and return its metrics. Never raises on store failures."""
        now = self._now()
        today = utc_start_of_day(now)
        self.events.emit(
            "start",
            dry_run=self.options.dry_run,
            source=self.options.source,
            today=today,
        )

        run_id = self._start_job_run(now)
        if not self._acquire_lock(now, run_id):
            return JobMetrics()
        try:
            return self._process_all(today, run_id)
        finally:
            self._release_lock()

    def credit_policy_for(self, position: InvestmentPosition) -> CreditPolicy:
        return select_credit_policy(
            position.start_date,
            self.options.credit_policy_cutover,
            force_completion_only=self.options.force_credit_on_completion_only,
        )

    def process_position(
        self,
        position: InvestmentPosition,
        today: datetime,
        metrics: JobMetrics,
    ) -> None:
        """Advance one position by at most one day, completing it when its plan runs out."""
        if position.last_return_applied is not None and position.last_return_applied >= today:
            self.events.emit("skip_already_applied", id=position.id)
            return

        policy = self.credit_policy_for(position)
        is_first_profit = (
            position.first_profit_date is not None and position.first_profit_date <= today
        )
        self.events.emit(
            "consider",
            id=position.id,
            user=position.user_id,
            applied_count=position.days_elapsed,
            duration=position.plan_duration,
            credit_policy=policy,
            is_first_profit=is_first_profit,
        )

        # Should have completed on an earlier run: finish it without accruing.
        if position.days_elapsed >= position.plan_duration:
            self.complete_position(position, position.total_earned, policy)
            metrics.completed += 1
            return

        daily_amount = daily_profit_amount(position.principal_amount, position.daily_profit)
        day = position.days_elapsed + 1
        total_earned = position.total_earned + daily_amount

        if not self.options.dry_run:
            if policy == "daily_credit":
                self._credit_balance(position.user_id, daily_amount)
            changes: dict[str, Any] = {
                "days_elapsed": day,
                "total_earned": total_earned,
                "last_return_applied": today,
                "updated_at": self._now(),
            }
            if is_first_profit:
                changes["first_profit_date"] = None
            self.store.update_position(position.id, changes)
            self.store.insert_return(
                InvestmentReturn(
                    investment_id=position.id,
                    user_id=position.user_id,
                    amount=daily_amount,
                    return_date=today,
                    created_at=self._now(),
                )
            )
            if policy == "daily_credit" and self.options.send_increment_emails:
                self._send_increment_email(position, day, daily_amount, total_earned, today)

        self.events.emit(
            "accrual_applied",
            id=position.id,
            day=day,
            amount=daily_amount,
            total_earned=total_earned,
            credit_policy=policy,
            dry_run=self.options.dry_run,
        )
        metrics.processed += 1
        metrics.total_applied += daily_amount

        if day >= position.plan_duration:
            accrued = position.model_copy(
                update={
                    "days_elapsed": day,
                    "total_earned": total_earned,
                    "last_return_applied": today,
                }
            )
            self.complete_position(accrued, total_earned, policy)
            metrics.completed += 1

    def complete_position(
        self,
        position: InvestmentPosition,
        total_earned: Decimal,
        policy: CreditPolicy,
    ) -> bool:
        """Credit, archive and notify for a finished position.

        This is the only completion path; both the post-accrual check and the
        already-exhausted check call it. Returns True when this call archived
        the position.
        """
        credit_earned = policy == "completion_only"
        end_date = self._now()
        if self.options.dry_run:
            self.events.emit(
                "completion_planned",
                id=position.id,
                user=position.user_id,
                total_earned=total_earned,
                principal=position.principal_amount,
                credit_amount=self._completion_credit(position, total_earned, credit_earned),
            )
            return False

        archived = self.unlock_principal_and_archive(
            position,
            total_earned,
            credit_earned=credit_earned,
            end_date=end_date,
        )
        if not archived:
            # Archived by an earlier or overlapping run; make sure the live row agrees.
            self.store.update_position(
                position.id,
                {"status": "completed", "total_earned": _ZERO, "updated_at": end_date},
            )
            return False

        if self.options.send_completion_emails:
            self._send_completion_email(position, total_earned, end_date)
        return True

    def unlock_principal_and_archive(
        self,
        position: InvestmentPosition,
        total_earned: Decimal,
        *,
        credit_earned: bool,
        end_date: datetime,
    ) -> bool:
        """Release principal (plus withheld earnings) to the user and write the archive row.

        The archive row is inserted first and acts as the claim: an existing
        row, or a unique-constraint conflict on insert, makes this a no-op.
        If the balance write then fails, the claim is removed so the next run
        retries the whole completion.
        """
        if self.store.archive_exists(position.id):
            self.events.emit("archive_exists", id=position.id)
            return False

        snapshot = CompletedInvestment(
            original_investment_id=position.id,
            user_id=position.user_id,
            plan_name=position.plan_name,
            daily_profit=position.daily_profit,
            duration=position.plan_duration,
            principal_amount=position.principal_amount,
            total_earned=total_earned,
            start_date=position.start_date,
            end_date=end_date,
            completed_at=self._now(),
        )
        try:
            self.store.insert_archive(snapshot)
        except StoreConflictError:
            self.events.emit("archive_exists", id=position.id, conflict=True)
            return False

        credit = self._completion_credit(position, total_earned, credit_earned)
        try:
            user = self.store.get_user_balance(position.user_id)
            if user is None:
                raise StoreError(f"User {position.user_id} not found.")
            final_balance = user.balance + credit
            remaining_deposits = max(_ZERO, user.active_deposits - position.principal_amount)
            self.store.update_user_balance(
                position.user_id,
                balance=final_balance,
                active_deposits=remaining_deposits,
            )
        except StoreError as exc:
            self.events.emit(
                "completion_credit_failed",
                investment=position.id,
                user=position.user_id,
                amount=credit,
                error=str(exc),
            )
            self._release_archive_claim(position.id)
            raise
        except Exception as exc:
            self.events.emit(
                "completion_credit_exception",
                investment=position.id,
                error=str(exc),
            )
            self._release_archive_claim(position.id)
            raise

        self.events.emit(
            "completion_credit_success",
            investment=position.id,
            user=position.user_id,
            amount=credit,
            earned=total_earned if credit_earned else _ZERO,
            principal=position.principal_amount,
            final_balance=final_balance,
        )
        self.store.update_position(
            position.id,
            {"status": "completed", "total_earned": _ZERO, "updated_at": end_date},
        )
        return True

    def _process_all(self, today: datetime, run_id: RowId | None) -> JobMetrics:
        try:
            positions = self.store.fetch_eligible_positions(today)
        except StoreError as exc:
            self.events.emit("fetch_error", error=str(exc))
            self._finalize(run_id, success=False, metrics=JobMetrics(), error_text=str(exc))
            return JobMetrics()

        metrics = JobMetrics()
        if not positions:
            self.events.emit("nothing_to_process")
            self._finalize(run_id, success=True, metrics=metrics)
            return metrics

        self.events.emit("found_investments", count=len(positions))
        for position in positions:
            try:
                self.process_position(position, today, metrics)
            except Exception as exc:
                # One failing position must not stop the run.
                self.events.emit("investment_exception", id=position.id, error=str(exc))

        self.events.emit(
            "summary",
            processed=metrics.processed,
            completed=metrics.completed,
            total_applied=metrics.total_applied,
            dry_run=self.options.dry_run,
        )
        self._finalize(run_id, success=True, metrics=metrics)
        return metrics

    @staticmethod
    def _completion_credit(
        position: InvestmentPosition,
        total_earned: Decimal,
        credit_earned: bool,
    ) -> Decimal:
        # Daily-credit positions were already paid their earnings day by day.
        return position.principal_amount + (total_earned if credit_earned else _ZERO)

    def _credit_balance(self, user_id: RowId, amount: Decimal) -> None:
        user = self.store.get_user_balance(user_id)
        if user is None:
            raise StoreError(f"User {user_id} not found.")
        self.store.update_user_balance(user_id, balance=user.balance + amount)

    def _release_archive_claim(self, position_id: RowId) -> None:
        try:
            self.store.delete_archive(position_id)
        except StoreError as exc:
            self.events.emit("archive_release_error", id=position_id, error=str(exc))

    def _send_increment_email(
        self,
        position: InvestmentPosition,
        day: int,
        daily_amount: Decimal,
        total_earned: Decimal,
        today: datetime,
    ) -> None:
        try:
            user = self.store.get_user_contact(position.user_id)
            if user is None:
                return
            self.notifier.send_investment_increment_email(
                user,
                IncrementEmail(
                    plan_name=position.display_plan_name,
                    day=day,
                    duration=position.plan_duration,
                    daily_amount=daily_amount,
                    total_earned=total_earned,
                    principal=position.principal_amount,
                    next_accrual_utc=next_accrual_time(today) if day < position.plan_duration else None,
                ),
            )
        except Exception as exc:
            self.events.emit("increment_email_error", investment=position.id, error=str(exc))

    def _send_completion_email(
        self,
        position: InvestmentPosition,
        total_earned: Decimal,
        end_date: datetime,
    ) -> None:
        try:
            user = self.store.get_user_contact(position.user_id)
            if user is None:
                return
            self.notifier.send_investment_completed_email(
                user,
                CompletionEmail(
                    plan_name=position.display_plan_name,
                    duration=position.plan_duration,
                    total_earned=total_earned,
                    principal=position.principal_amount,
                    end_date_utc=end_date,
                ),
            )
        except Exception as exc:
            self.events.emit("completion_email_error", investment=position.id, error=str(exc))

    def _start_job_run(self, now: datetime) -> RowId | None:
        if self.options.dry_run:
            return None
        try:
            return self.store.insert_job_run(
                JobRun(
                    job_name=self.options.job_name,
                    source=self.options.source,
                    meta=self.options.run_meta(),
                    started_at=now,
                )
            )
        except Exception as exc:
            self.events.emit("job_runs_insert_error", error=str(exc))
            return None

    def _finalize(
        self,
        run_id: RowId | None,
        *,
        success: bool,
        metrics: JobMetrics,
        error_text: str | None = None,
    ) -> None:
        if run_id is None:
            return
        try:
            self.store.update_job_run(
                run_id,
                {
                    "finished_at": self._now(),
                    "success": success,
                    "processed_count": metrics.processed,
                    "completed_count": metrics.completed,
                    "total_applied": metrics.total_applied,
                    "error_text": error_text,
                },
            )
        except Exception as exc:
            self.events.emit("finalize_exception", error=str(exc), job_run_id=run_id)

    def _acquire_lock(self, now: datetime, run_id: RowId | None) -> bool:
        if self.options.dry_run or not self.options.use_run_lock:
            return True
        try:
            acquired = self.store.acquire_run_lock(
                self.options.job_name,
                self.holder_id,
                now=now,
                ttl_seconds=self.options.run_lock_ttl_seconds,
            )
        except StoreError as exc:
            self.events.emit("lock_error", error=str(exc))
            self._finalize(run_id, success=False, metrics=JobMetrics(), error_text=str(exc))
            return False
        if not acquired:
            self.events.emit("lock_held", holder=self.holder_id)
            self._finalize(
                run_id,
                success=False,
                metrics=JobMetrics(),
                error_text="run lock held by another run",
            )
            return False
        self._lock_held = True
        return True

    def _release_lock(self) -> None:
        if not self._lock_held:
            return
        try:
            self.store.release_run_lock(self.options.job_name, self.holder_id)
        except StoreError as exc:
            self.events.emit("lock_release_error", error=str(exc))
        self._lock_held = False

    def _now(self) -> datetime:
        current = self._now_provider()
        return current.astimezone(UTC) if current.tzinfo else current.replace(tzinfo=UTC)


def run_daily_investment_job(
    options: JobOptions,
    store: AccrualStore,
    events: JobEventLogger,
    notifier: Notifier | None = None,
    now_provider: Callable[[], datetime] | None = None,
) -> JobMetrics:
    """Entry point shared by the scheduled run, the manual trigger and the CLI harness."""
    job = DailyAccrualJob(
        store=store,
        events=events,
        options=options,
        notifier=notifier,
        now_provider=now_provider,
    )
    return job.run()


def has_run_today(store: AccrualStore, job_name: str, now: datetime) -> JobRun | None:
    """Return a job run that already started today (UTC), if any."""
    runs = store.list_job_runs(job_name, limit=1, started_since=utc_start_of_day(now))
    return runs[0] if runs else None
