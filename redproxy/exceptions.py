"""Error taxonomy surfaced by the upstream access layer."""

from typing import Optional


class RedproxyError(Exception):
    """Base exception for all redproxy errors."""

    def __init__(self, message: str = "An error occurred in redproxy"):
        self.message = message
        super().__init__(self.message)


class ConfigError(RedproxyError):
    """Configuration is invalid or missing."""

    def __init__(self, message: str = "Configuration error"):
        super().__init__(message)


class AuthFailure(RedproxyError):
    """Credential acquisition or refresh failed."""

    def __init__(self, message: str = "Failed to acquire an upstream credential"):
        super().__init__(message)


class FetchError(RedproxyError):
    """Base exception for failed upstream fetches."""

    kind = "upstream"

    def __init__(self, message: str = "Failed to fetch data from upstream"):
        super().__init__(message)


class QuarantinedError(FetchError):
    """HTTP 403 - community is quarantined and the caller did not opt in."""

    kind = "quarantined"

    def __init__(self, message: str = "Community is quarantined"):
        super().__init__(message)


class GatedError(FetchError):
    """HTTP 403 - community is gated behind a content warning."""

    kind = "gated"

    def __init__(self, message: str = "Community is gated"):
        super().__init__(message)


class PrivateError(FetchError):
    """HTTP 403 - community is private."""

    kind = "private"

    def __init__(self, message: str = "Community is private"):
        super().__init__(message)


class BannedError(FetchError):
    """HTTP 403/404 - community or user has been banned."""

    kind = "banned"

    def __init__(self, message: str = "Community has been banned"):
        super().__init__(message)


class NotFoundError(FetchError):
    """HTTP 404 - resource does not exist."""

    kind = "not_found"

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class RateLimitedError(FetchError):
    """HTTP 429 - still rate limited after the retry budget was spent."""

    kind = "rate_limited"

    def __init__(self, message: str = "Upstream rate limit exceeded"):
        super().__init__(message)


class UpstreamStatusError(FetchError):
    """Unclassified upstream failure.

    ``status`` is the last HTTP status seen, or ``None`` when the request never
    produced a response (connection failure, timeout).
    """

    kind = "upstream"

    def __init__(self, status: Optional[int], message: Optional[str] = None):
        self.status = status
        if message is None:
            message = f"Upstream returned HTTP {status}" if status else "Upstream unreachable"
        super().__init__(message)


class DecodeError(FetchError):
    """Upstream answered 2xx with a body that could not be decoded."""

    kind = "decode"

    def __init__(self, message: str = "Malformed upstream payload"):
        super().__init__(message)
