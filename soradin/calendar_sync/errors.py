"""Failures raised while talking to calendar providers."""


class CalendarSyncError(Exception):
    """Base error for one connection's sync; never carries tokens."""

    status = 'error'

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderNotConfigured(CalendarSyncError):
    status = 'not_configured'


class ReauthorizationRequired(CalendarSyncError):
    """The stored refresh token was revoked or is missing."""

    status = 'reauthorization_required'


class RateLimited(CalendarSyncError):
    status = 'rate_limited'

    def __init__(self, message: str, provider: str | None = None, retry_after: int | None = None) -> None:
        super().__init__(message, provider)
        self.retry_after = retry_after


class ProviderError(CalendarSyncError):
    def __init__(self, message: str, provider: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message, provider)
        self.status_code = status_code


class AccessTokenRejected(ReauthorizationRequired):
    """A provider answered 401; one forced refresh may still recover."""
