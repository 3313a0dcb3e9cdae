"""
Error taxonomy for the sync engine and its Google collaborators.

- AuthError: credential refresh failed, ends the cycle
- ProviderError: Gmail/Sheets returned a non-2xx response, ends the tick
- PerMessageError: one message could not be fetched or parsed, skipped
- NotFoundError: a record (usually the connection) no longer exists
"""


class SyncError(Exception):
    """Base error for sender sync."""


class AuthError(SyncError):
    """Raised when an access token cannot be obtained or refreshed."""


class ProviderError(SyncError):
    """Raised when a Google API call fails. Carries the upstream error body."""

    def __init__(self, message: str, status: int | None = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class PerMessageError(SyncError):
    """Raised when a single message cannot be turned into sender metadata."""

    def __init__(self, message_id: str, reason: str):
        super().__init__(f"Message {message_id}: {reason}")
        self.message_id = message_id


class NotFoundError(SyncError):
    """Raised when a connection or related record does not exist."""
