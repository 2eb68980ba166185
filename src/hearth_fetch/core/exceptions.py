"""Custom exceptions for the hearth-fetch library."""

from __future__ import annotations


class AcquisitionError(Exception):
    """Base exception for all acquisition-layer errors."""

    def __init__(self, message: str, url: str | None = None) -> None:
        self.url = url
        super().__init__(message)


class ChallengeTimeoutError(AcquisitionError):
    """Raised when the anti-bot challenge is not cleared within the solve window."""

    def __init__(self, origin: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            f"Challenge for '{origin}' not cleared within {timeout:g}s", origin
        )


class BrowserUnavailableError(AcquisitionError):
    """Raised when the automation browser cannot be launched or has died."""

    def __init__(self, details: str | None = None) -> None:
        message = "Browser unavailable"
        if details:
            message += f": {details}"
        super().__init__(message)


class UpstreamRejectedError(AcquisitionError):
    """Raised when the upstream answers 401/403 after clearance was granted.

    This points at a stale or wrong identity, not at a missing challenge
    token, so it must never trigger another challenge solve by itself.
    """

    def __init__(self, url: str, status: int) -> None:
        self.status = status
        super().__init__(f"Upstream rejected request to '{url}' (HTTP {status})", url)


class UpstreamUnavailableError(AcquisitionError):
    """Raised on 5xx responses, network errors and request timeouts."""

    def __init__(
        self, url: str, status: int | None = None, details: str | None = None
    ) -> None:
        self.status = status
        message = f"Upstream unavailable for '{url}'"
        if status:
            message += f" (HTTP {status})"
        if details:
            message += f": {details}"
        super().__init__(message, url)


class RateLimitedError(AcquisitionError):
    """Raised when the upstream answers 429."""

    def __init__(self, url: str, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        message = f"Rate limited by upstream for '{url}'"
        if retry_after:
            message += f" (retry after {retry_after:g}s)"
        super().__init__(message, url)


class AssetNotFoundError(AcquisitionError):
    """Raised when the upstream definitively reports 404."""

    def __init__(self, url: str) -> None:
        super().__init__(f"Not found: '{url}'", url)


class TransientFailureError(AcquisitionError):
    """Raised for any other unexpected upstream answer."""

    def __init__(self, url: str, status: int | None = None) -> None:
        self.status = status
        message = f"Unexpected upstream response for '{url}'"
        if status is not None:
            message += f" (HTTP {status})"
        super().__init__(message, url)


class InvalidConfigurationError(AcquisitionError):
    """Raised when configuration is invalid."""

    def __init__(self, details: str) -> None:
        super().__init__(f"Invalid configuration: {details}")


class CacheError(AcquisitionError):
    """Raised when a disk cache operation fails."""

    def __init__(self, operation: str, details: str | None = None) -> None:
        message = f"Cache {operation} failed"
        if details:
            message += f": {details}"
        super().__init__(message)
