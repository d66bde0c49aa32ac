"""Notifier contract consumed by the accrual job."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..models import UserContact
from .models import CompletionEmail, IncrementEmail


class Notifier(ABC):
    """Delivers investment emails. Implementations raise NotificationError on failure."""

    @abstractmethod
    def send_investment_increment_email(self, user: UserContact, email: IncrementEmail) -> bool:
        """Notify the user of one day's credited profit."""

    @abstractmethod
    def send_investment_completed_email(self, user: UserContact, email: CompletionEmail) -> bool:
        """Notify the user that their plan completed and principal was released."""

    def close(self) -> None:
        """Release notifier resources."""


class NullNotifier(Notifier):
    """Notifier used when no email transport is configured."""

    def send_investment_increment_email(self, user: UserContact, email: IncrementEmail) -> bool:
        return False

    def send_investment_completed_email(self, user: UserContact, email: CompletionEmail) -> bool:
        return False
