"""
Error taxonomy for the sync engine.

The remote client raises these exceptions; the engine's public operations
catch them and report a structured result instead of propagating them.

Exception Hierarchy:
    SyncError (base)
    ├── SyncBusyError (a write is already in flight)
    ├── TransportError (network, DNS or non-2xx HTTP failure)
    │   └── TransportTimeoutError (upper bound wait exceeded)
    ├── ServerRejectedError (endpoint answered with status "error")
    └── MalformedResponseError (2xx with an unusable body)

Example:
    >>> from ems_sync.core.errors import ServerRejectedError
    >>> try:
    ...     raise ServerRejectedError("Office is locked", action="upsertOffice")
    ... except ServerRejectedError as e:
    ...     print(e.kind.value, e.context)
    server-rejected {'action': 'upsertOffice'}
"""

from __future__ import annotations

from enum import Enum


class SyncErrorKind(str, Enum):
    """Kinds of sync failure surfaced to callers."""

    BUSY = "sync-busy"
    TRANSPORT_TIMEOUT = "transport-timeout"
    TRANSPORT_ERROR = "transport-error"
    SERVER_REJECTED = "server-rejected"
    MALFORMED_RESPONSE = "malformed-response"


class SyncError(Exception):
    """
    Base exception for all sync failures.

    Attributes:
        message: Human-readable error message
        context: Optional dictionary of additional context
    """

    kind: SyncErrorKind = SyncErrorKind.TRANSPORT_ERROR

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        return self.message


class SyncBusyError(SyncError):
    """Raised when a write is attempted while another one is outstanding."""

    kind = SyncErrorKind.BUSY


class TransportError(SyncError):
    """
    Network level failure talking to the remote endpoint.

    Covers connection and DNS errors as well as non-2xx HTTP responses.

    Attributes:
        status_code: HTTP status code when the server answered, else None
    """

    kind = SyncErrorKind.TRANSPORT_ERROR

    def __init__(self, message: str, status_code: int | None = None, **context: object) -> None:
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class TransportTimeoutError(TransportError):
    """
    Raised when a fetch or write exceeds its upper bound wait.

    Attributes:
        timeout_seconds: The limit that was exceeded
    """

    kind = SyncErrorKind.TRANSPORT_TIMEOUT

    def __init__(self, message: str, timeout_seconds: float | None = None, **context: object) -> None:
        super().__init__(message, timeout_seconds=timeout_seconds, **context)
        self.timeout_seconds = timeout_seconds


class ServerRejectedError(SyncError):
    """The endpoint explicitly refused the request with an error status."""

    kind = SyncErrorKind.SERVER_REJECTED


class MalformedResponseError(SyncError):
    """
    The endpoint answered 2xx but the body could not be used.

    Attributes:
        body: Leading part of the offending response body (may be empty)
    """

    kind = SyncErrorKind.MALFORMED_RESPONSE

    def __init__(self, message: str, body: str = "", **context: object) -> None:
        super().__init__(message, **context)
        self.body = body[:500]


__all__ = [
    "MalformedResponseError",
    "ServerRejectedError",
    "SyncBusyError",
    "SyncError",
    "SyncErrorKind",
    "TransportError",
    "TransportTimeoutError",
]
