"""Application exception classes."""


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""


class StoreError(Exception):
    """Raised when backing store calls fail or return malformed data."""


class StoreRequestError(StoreError):
    """Raised for store request failures with category/status metadata."""

    def __init__(
        self,
        message: str,
        *,
        category: str = "unknown",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.status_code = status_code


class StoreConflictError(StoreRequestError):
    """Raised when an insert violates a unique constraint (HTTP 409)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, category="conflict", status_code=409)


class JournalError(Exception):
    """Raised when writing to journal files fails."""


class NotificationError(Exception):
    """Raised when an email notification cannot be delivered."""
