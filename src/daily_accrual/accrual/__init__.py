"""Daily investment accrual job."""

from .models import JobMetrics, JobOptions
from .policy import CreditPolicy, daily_profit_amount, select_credit_policy, utc_start_of_day
from .runner import DailyAccrualJob, has_run_today, run_daily_investment_job

__all__ = [
    "CreditPolicy",
    "DailyAccrualJob",
    "JobMetrics",
    "JobOptions",
    "daily_profit_amount",
    "has_run_today",
    "run_daily_investment_job",
    "select_credit_policy",
    "utc_start_of_day",
]
