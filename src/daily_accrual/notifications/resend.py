"""Resend HTTP API email transport."""

from __future__ import annotations

import html
import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import httpx

from ..config import Settings
from ..exceptions import NotificationError
from ..models import UserContact
from ..redaction import sanitize_text
from .base import Notifier
from .models import CompletionEmail, IncrementEmail


def _money(value: Decimal) -> str:
    return f"${value.quantize(Decimal('0.01')):,}"


def _utc_label(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.astimezone(UTC).strftime("%Y-%m-%d %H:%M UTC")


def _layout(title: str, greeting_name: str, rows: list[tuple[str, str]], footer: str) -> str:
    body_rows = "".join(
        f'<tr><td style="padding:4px 12px 4px 0;color:#555">{html.escape(label)}</td>'
        f'<td style="padding:4px 0"><strong>{html.escape(value)}</strong></td></tr>'
        for label, value in rows
    )
    return (
        '<div style="font-family:system-ui,-apple-system,Segoe UI,Roboto,Arial,sans-serif;'
        'max-width:560px;margin:0 auto;padding:24px;line-height:1.5">'
        f'<h1 style="font-size:20px;margin:0 0 16px">{html.escape(title)}</h1>'
        f"<p>Hi {html.escape(greeting_name)},</p>"
        f"<table>{body_rows}</table>"
        f'<p style="margin-top:16px">{html.escape(footer)}</p>'
        "</div>"
    )


def render_increment_email(user: UserContact, email: IncrementEmail) -> tuple[str, str]:
    """Return (subject, html) for a daily increment email."""
    subject = f"{email.plan_name}: day {email.day} of {email.duration} profit credited"
    body = _layout(
        "Daily profit credited",
        user.username or "Investor",
        [
            ("Plan", email.plan_name),
            ("Day", f"{email.day} / {email.duration}"),
            ("Credited today", _money(email.daily_amount)),
            ("Total earned", _money(email.total_earned)),
            ("Principal", _money(email.principal)),
            ("Next accrual", _utc_label(email.next_accrual_utc)),
        ],
        "Profit has been added to your available balance.",
    )
    return subject, body


def render_completion_email(user: UserContact, email: CompletionEmail) -> tuple[str, str]:
    """Return (subject, html) for a plan completion email."""
    subject = f"{email.plan_name} completed"
    body = _layout(
        "Your investment plan is complete",
        user.username or "Investor",
        [
            ("Plan", email.plan_name),
            ("Duration", f"{email.duration} days"),
            ("Total earned", _money(email.total_earned)),
            ("Principal released", _money(email.principal)),
            ("Completed", _utc_label(email.end_date_utc)),
        ],
        "Your principal and earnings are now available in your balance.",
    )
    return subject, body


class ResendNotifier(Notifier):
    """Sends investment emails through the Resend ``/emails`` endpoint."""

    def __init__(
        self,
        api_key: str,
        logger: logging.Logger,
        *,
        from_email: str,
        from_name: str,
        base_url: str = "https://api.resend.com",
        timeout_seconds: float = 10.0,
    ) -> None:
        if not api_key:
            raise NotificationError("Resend API key is required.")
        self.logger = logger
        self.sender = f"{from_name} <{from_email}>"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            headers={
                "Accept": "application/json",
                "Authorization": f"Bearer {api_key}",
                "User-Agent": "daily-accrual-job/0.1",
            },
        )

    @classmethod
    def from_settings(cls, settings: Settings, logger: logging.Logger) -> ResendNotifier:
        if not settings.resend_api_key:
            raise NotificationError("RESEND_API_KEY is not configured.")
        return cls(
            settings.resend_api_key,
            logger,
            from_email=settings.email_from,
            from_name=settings.email_from_name,
            base_url=str(settings.resend_api_base_url),
            timeout_seconds=settings.email_timeout_seconds,
        )

    def __enter__(self) -> ResendNotifier:
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def send_investment_increment_email(self, user: UserContact, email: IncrementEmail) -> bool:
        subject, body = render_increment_email(user, email)
        return self._send(user, subject, body)

    def send_investment_completed_email(self, user: UserContact, email: CompletionEmail) -> bool:
        subject, body = render_completion_email(user, email)
        return self._send(user, subject, body)

    def _send(self, user: UserContact, subject: str, body: str) -> bool:
        if not user.email:
            raise NotificationError(f"User {user.id} has no email address.")
        payload = {"from": self.sender, "to": [user.email], "subject": subject, "html": body}
        try:
            response = self._client.post("/emails", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise NotificationError(
                f"Resend rejected email with status {exc.response.status_code}: "
                f"{sanitize_text(exc.response.text[:300])}"
            ) from exc
        except httpx.HTTPError as exc:
            raise NotificationError(f"Resend request failed: {sanitize_text(str(exc))}") from exc
        self.logger.info("Email sent: %s", subject)
        return True
