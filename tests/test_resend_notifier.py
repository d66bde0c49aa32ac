"""Resend email notifier rendering and transport errors."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import httpx
import pytest

from daily_accrual.exceptions import NotificationError
from daily_accrual.models import UserContact
from daily_accrual.notifications import CompletionEmail, IncrementEmail, ResendNotifier
from daily_accrual.notifications.resend import render_completion_email, render_increment_email

USER = UserContact(id=10, email="investor@example.com", username="<Ada>")


def _increment() -> IncrementEmail:
    return IncrementEmail(
        plan_name="Gold",
        day=2,
        duration=7,
        daily_amount=Decimal("175"),
        total_earned=Decimal("350"),
        principal=Decimal("5000"),
        next_accrual_utc=datetime(2025, 10, 11, tzinfo=UTC),
    )


def _notifier(monkeypatch: Any, response: httpx.Response) -> tuple[ResendNotifier, list[Any]]:
    notifier = ResendNotifier(
        "re_test",
        logging.getLogger("test_resend"),
        from_email="noreply@example.com",
        from_name="AxixFinance",
    )
    sent: list[Any] = []

    def _post(url: str, json: Any = None) -> httpx.Response:
        sent.append((url, json))
        return response

    monkeypatch.setattr(notifier._client, "post", _post)
    return notifier, sent


def _response(status_code: int, **kwargs: Any) -> httpx.Response:
    return httpx.Response(
        status_code,
        request=httpx.Request("POST", "https://api.resend.com/emails"),
        **kwargs,
    )


def test_render_increment_email_escapes_user_values() -> None:
    subject, body = render_increment_email(USER, _increment())

    assert subject == "Gold: day 2 of 7 profit credited"
    assert "&lt;Ada&gt;" in body
    assert "$175.00" in body
    assert "2025-10-11 00:00 UTC" in body


def test_render_completion_email() -> None:
    subject, body = render_completion_email(
        USER,
        CompletionEmail(
            plan_name="Gold",
            duration=7,
            total_earned=Decimal("1225"),
            principal=Decimal("5000"),
            end_date_utc=datetime(2025, 10, 16, 0, 5, tzinfo=UTC),
        ),
    )

    assert subject == "Gold completed"
    assert "$1,225.00" in body
    assert "$5,000.00" in body


def test_send_posts_to_emails_endpoint(monkeypatch: Any) -> None:
    notifier, sent = _notifier(monkeypatch, _response(200, json={"id": "email_1"}))

    assert notifier.send_investment_increment_email(USER, _increment()) is True

    url, payload = sent[0]
    assert url == "/emails"
    assert payload["from"] == "AxixFinance <noreply@example.com>"
    assert payload["to"] == ["investor@example.com"]
    assert payload["subject"] == "Gold: day 2 of 7 profit credited"


def test_rejected_email_raises_notification_error(monkeypatch: Any) -> None:
    notifier, _ = _notifier(monkeypatch, _response(422, text="invalid from address"))

    with pytest.raises(NotificationError, match="422"):
        notifier.send_investment_increment_email(USER, _increment())


def test_user_without_email_raises(monkeypatch: Any) -> None:
    notifier, sent = _notifier(monkeypatch, _response(200, json={}))

    with pytest.raises(NotificationError):
        notifier.send_investment_increment_email(UserContact(id=11), _increment())
    assert sent == []


def test_missing_api_key_rejected() -> None:
    with pytest.raises(NotificationError):
        ResendNotifier(
            "",
            logging.getLogger("test_resend"),
            from_email="noreply@example.com",
            from_name="AxixFinance",
        )
