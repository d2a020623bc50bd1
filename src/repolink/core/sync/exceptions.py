"""
Exceptions raised by the project sync engine.

Exception Hierarchy:
    RepoLinkError (base)
    ├── AuthenticationError (no usable auth token)
    ├── NetworkError (transport failure or timeout)
    ├── ServerError (non-2xx response or unreadable body)
    ├── ValidationError (invalid project id, filtered before sending)
    └── StorageError (key-value store get/set rejected)

Example:
    >>> from repolink.core.sync.exceptions import ServerError
    >>> try:
    ...     raise ServerError("Sync failed: quota exceeded", status_code=429)
    ... except ServerError as e:
    ...     print(e.status_code, e)
    429 Sync failed: quota exceeded
"""

from __future__ import annotations


class RepoLinkError(Exception):
    """
    Base exception for all sync engine errors.

    Attributes:
        message: Human-readable error message
        context: Additional context passed as keyword arguments
    """

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        return self.message


class AuthenticationError(RepoLinkError):
    """Raised when no auth token is available for a backend call."""

    def __init__(self, message: str = "User not authenticated", **context: object) -> None:
        super().__init__(message, **context)


class NetworkError(RepoLinkError):
    """Raised when the backend cannot be reached (connection error, timeout)."""

    pass


class ServerError(RepoLinkError):
    """
    Raised when the backend answers with a non-2xx status.

    Attributes:
        status_code: HTTP status code, or None when the body was unreadable
        server_message: The ``error`` field from the response body, if any
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        server_message: str | None = None,
        **context: object,
    ) -> None:
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code
        self.server_message = server_message


class ValidationError(RepoLinkError):
    """
    Raised for a project id that may not be sent to the backend.

    The sync engine catches this while filtering outgoing projects; it is
    never propagated to callers of the sync entry points.
    """

    def __init__(self, project_id: str, reason: str) -> None:
        super().__init__(f"Invalid project id {project_id!r}: {reason}", project_id=project_id)
        self.project_id = project_id
        self.reason = reason


class StorageError(RepoLinkError):
    """Raised when the local key-value store rejects a read or write."""

    pass


__all__ = [
    "RepoLinkError",
    "AuthenticationError",
    "NetworkError",
    "ServerError",
    "ValidationError",
    "StorageError",
]
