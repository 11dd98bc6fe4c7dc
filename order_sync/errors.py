"""Error types for the live order sync client."""

from typing import Optional


class SyncError(Exception):
    """Base class for sync errors."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message}: {self.cause}"
        return self.message


class ConnectionError(SyncError):
    """Failed to establish the push connection."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(f"connection failed: {message}", cause)


class AuthenticationError(ConnectionError):
    """The push endpoint rejected the credential."""


class AuthRefreshFailedError(SyncError):
    """Could not mint a new session token from the device token."""


class BackendError(SyncError):
    """The REST backend answered with an error status."""

    def __init__(self, status_code: int, message: str, data: Optional[dict] = None):
        super().__init__(f"backend returned {status_code}: {message}")
        self.status_code = status_code
        self.data = data or {}
