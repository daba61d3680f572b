"""
Error types raised by the session client.
Callers see NetworkError, HttpError or SessionExpiredError; RefreshRequired stays internal.
"""

SESSION_EXPIRED_MESSAGE = "Session expired. Please login again."


class ApiError(Exception):
    """Base class for every error raised by the access layer."""


class NetworkError(ApiError):
    """The transport failed and no response was received. Never triggers a refresh."""


class HttpError(ApiError):
    """Terminal non-2xx response."""

    def __init__(self, status_code: int, message: str | None = None):
        self.status_code = status_code
        self.message = message or f"HTTP {status_code}"
        super().__init__(self.message)


class SessionExpiredError(HttpError):
    """The session cannot be recovered; the user has to log in again."""

    def __init__(self, message: str = SESSION_EXPIRED_MESSAGE):
        super().__init__(401, message)


class UnauthorizedError(SessionExpiredError):
    """401 on a request that was already retried, or on the refresh endpoint itself."""


class RefreshFailedError(ApiError):
    """The refresh exchange did not produce a new credential pair."""


class RefreshRequired(ApiError):
    """First-attempt 401: the coordinator decides what happens next."""

    def __init__(self, descriptor, sent_token: str | None):
        self.descriptor = descriptor
        self.sent_token = sent_token
        super().__init__(f"{descriptor.method} {descriptor.path} needs a credential refresh")
