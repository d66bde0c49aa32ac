"""Typed settings loader for the daily accrual job."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, AnyUrl, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigError

DEFAULT_JOB_NAME = "daily-investments"
DEFAULT_CREDIT_POLICY_CUTOVER = datetime(2025, 9, 18, tzinfo=UTC)


class Settings(BaseSettings):
    """Application settings loaded from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    app_env: Literal["dev", "staging", "prod"] = Field(default="dev", alias="APP_ENV")

    supabase_url: AnyUrl | None = Field(default=None, alias="SUPABASE_URL")
    supabase_service_role_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_KEY"),
        repr=False,
    )
    store_rest_path: str = Field(default="/rest/v1", alias="STORE_REST_PATH")
    store_timeout_seconds: float = Field(default=15.0, alias="STORE_TIMEOUT_SECONDS")
    store_max_retries: int = Field(default=1, alias="STORE_MAX_RETRIES")

    job_name: str = Field(default=DEFAULT_JOB_NAME, alias="JOB_NAME")
    job_source: str = Field(default="cron", alias="JOB_SOURCE")
    dry_run: bool = Field(default=False, alias="DRY_RUN")
    send_increment_emails: bool = Field(default=False, alias="SEND_INCREMENT_EMAILS")
    send_completion_emails: bool = Field(default=True, alias="SEND_COMPLETION_EMAILS")
    force_credit_on_completion_only: bool = Field(
        default=False,
        alias="FORCE_CREDIT_ON_COMPLETION_ONLY",
    )
    credit_policy_cutover: datetime = Field(
        default=DEFAULT_CREDIT_POLICY_CUTOVER,
        alias="CREDIT_POLICY_CUTOVER",
    )
    run_lock_enabled: bool = Field(default=True, alias="RUN_LOCK_ENABLED")
    run_lock_ttl_seconds: int = Field(default=3600, alias="RUN_LOCK_TTL_SECONDS")
    job_stale_hours: float = Field(default=26.0, alias="JOB_STALE_HOURS")

    journal_dir: Path = Field(default=Path("./data/journal"), alias="JOURNAL_DIR")

    resend_api_key: str | None = Field(default=None, alias="RESEND_API_KEY", repr=False)
    resend_api_base_url: AnyUrl = Field(
        default=AnyUrl("https://api.resend.com"),
        alias="RESEND_API_BASE_URL",
    )
    email_from: str = Field(default="onboarding@resend.dev", alias="EMAIL_FROM")
    email_from_name: str = Field(default="AxixFinance", alias="EMAIL_FROM_NAME")
    email_timeout_seconds: float = Field(default=10.0, alias="EMAIL_TIMEOUT_SECONDS")

    @field_validator("supabase_url", "supabase_service_role_key", "resend_api_key", mode="before")
    @classmethod
    def empty_string_to_none(cls, value: Any) -> Any:
        """Treat empty env-string values as unset."""
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("credit_policy_cutover", mode="after")
    @classmethod
    def cutover_as_utc(cls, value: datetime) -> datetime:
        return value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)

    @model_validator(mode="after")
    def validate_ranges(self) -> Settings:
        """Validate numeric ranges and path shapes."""
        if not self.store_rest_path.startswith("/"):
            raise ValueError("STORE_REST_PATH must start with '/'.")
        if self.store_timeout_seconds <= 0:
            raise ValueError("STORE_TIMEOUT_SECONDS must be > 0.")
        if self.store_max_retries < 0:
            raise ValueError("STORE_MAX_RETRIES must be >= 0.")
        if not self.job_name.strip():
            raise ValueError("JOB_NAME must not be empty.")
        if not self.job_source.strip():
            raise ValueError("JOB_SOURCE must not be empty.")
        if self.run_lock_ttl_seconds <= 0:
            raise ValueError("RUN_LOCK_TTL_SECONDS must be > 0.")
        if self.job_stale_hours <= 0:
            raise ValueError("JOB_STALE_HOURS must be > 0.")
        if self.email_timeout_seconds <= 0:
            raise ValueError("EMAIL_TIMEOUT_SECONDS must be > 0.")
        return self

    def require_store_credentials(self) -> tuple[str, str]:
        """Return (url, service role key) or raise ConfigError when either is missing."""
        if self.supabase_url is None or not self.supabase_service_role_key:
            raise ConfigError("Missing SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY.")
        return str(self.supabase_url), self.supabase_service_role_key

    def safe_summary(self) -> dict[str, Any]:
        """Return config summary safe for journaling (no credentials)."""
        return {
            "app_env": self.app_env,
            "store_url": str(self.supabase_url) if self.supabase_url else None,
            "store_credentials_present": bool(self.supabase_service_role_key),
            "store_timeout_seconds": self.store_timeout_seconds,
            "job_name": self.job_name,
            "job_source": self.job_source,
            "dry_run": self.dry_run,
            "send_increment_emails": self.send_increment_emails,
            "send_completion_emails": self.send_completion_emails,
            "force_credit_on_completion_only": self.force_credit_on_completion_only,
            "credit_policy_cutover": self.credit_policy_cutover.isoformat(),
            "run_lock_enabled": self.run_lock_enabled,
            "run_lock_ttl_seconds": self.run_lock_ttl_seconds,
            "email_configured": bool(self.resend_api_key),
        }


def load_settings() -> Settings:
    """Load and validate settings, raising ConfigError on failure."""
    try:
        settings = Settings()
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed reading environment/.env: {exc}") from exc

    settings.journal_dir.mkdir(parents=True, exist_ok=True)
    return settings
