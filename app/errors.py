"""Exception hierarchy shared by the synchronisation core."""

from __future__ import annotations


class WatchSyncError(Exception):
    """Base class for all domain errors raised by the service."""


class ExternalServiceError(WatchSyncError):
    """The catalog provider could not be reached or returned unusable data.

    These are never retried inline; the next scheduled pass picks the item up
    again.
    """

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(ExternalServiceError):
    """The provider answered with HTTP 429."""

    def __init__(self, message: str, *, retry_after: int | None = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class ProviderNotFoundError(ExternalServiceError):
    """The provider does not know the requested identifier."""

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class PersistenceError(WatchSyncError):
    """A storage operation failed and its transaction was rolled back."""


class ConsistencyViolation(WatchSyncError):
    """A status mutation targeted an item the profile has not favorited."""


class NotFoundError(WatchSyncError):
    """A stored profile or content row does not exist."""
