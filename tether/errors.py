"""Error kinds raised by the sync engine.

Library code raises these; the orchestrator turns them into a ``SyncResult``
that names the failed phase, and command handlers render that result.
"""

from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for every failure surfaced by Tether."""

    kind = "sync_error"

    def __init__(
        self,
        message: str,
        *,
        phase: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


class FileAccessError(SyncError, OSError):
    """A local file could not be read, written, or removed."""

    kind = "io_error"

    def __init__(self, message: str, *, path: Optional[str] = None, **kwargs) -> None:
        SyncError.__init__(self, message, **kwargs)
        self.path = path


class NotFoundError(SyncError):
    """A required local path or remote resource does not exist."""

    kind = "not_found"


class AuthError(SyncError):
    """The access token is missing, invalid, or expired."""

    kind = "auth_error"


class PermissionDeniedError(SyncError):
    """The token is valid but lacks the scope needed for the operation."""

    kind = "permission_error"


class NetworkError(SyncError):
    """The host could not be reached or the call timed out."""

    kind = "network_error"


class ApiError(SyncError):
    """The host answered with an unexpected status code."""

    kind = "api_error"

    def __init__(self, message: str, status_code: int, **kwargs) -> None:
        super().__init__(message, status_code=status_code, **kwargs)


class ParseError(SyncError):
    """A document or response is missing required fields or is malformed."""

    kind = "parse_error"


__all__ = [
    "ApiError",
    "AuthError",
    "FileAccessError",
    "NetworkError",
    "NotFoundError",
    "ParseError",
    "PermissionDeniedError",
    "SyncError",
]
