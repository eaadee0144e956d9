"""
Error taxonomy for the email tracking feature.

Fetch failures are sorted into three buckets so the poller can react to each
one differently: pause on auth problems, reset the checkpoint on stale
cursors, and simply wait for the next tick on everything else.
"""


class GmailHistoryError(Exception):
    """Base exception for Gmail history/metadata fetch errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}


class AuthError(GmailHistoryError):
    """Credential missing, invalid or expired. Not retryable without a new token."""


class TransientFetchError(GmailHistoryError):
    """Network failure, rate limit or 5xx. Retried on the next scheduled tick."""


class StaleCursorError(GmailHistoryError):
    """The provider can no longer resume from the stored cursor."""
