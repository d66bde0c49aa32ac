"""Email notifications for investment accrual and completion."""

from .base import Notifier, NullNotifier
from .models import CompletionEmail, IncrementEmail
from .resend import ResendNotifier

__all__ = [
    "CompletionEmail",
    "IncrementEmail",
    "Notifier",
    "NullNotifier",
    "ResendNotifier",
]
