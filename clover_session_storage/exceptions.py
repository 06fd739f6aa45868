"""
Custom exceptions for session storage.

Remote failures are wrapped in RemoteRequestError so the failover
classifier can inspect a uniform shape (code, status, response_received)
regardless of which transport error produced them.
"""

from __future__ import annotations


class SessionStorageError(Exception):
    """Base exception for all session storage errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SessionNotFoundError(SessionStorageError):
    """Raised when a session is not available in local storage."""

    def __init__(self, session_id: str):
        super().__init__(
            f"Session {session_id} is not available in local storage",
            {"session_id": session_id},
        )
        self.session_id = session_id


class StorageIOError(SessionStorageError):
    """Raised when a device storage I/O operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class RemoteRequestError(SessionStorageError):
    """Raised when a request to the pool service fails.

    Attributes:
        endpoint: Method and path of the failed request
        code: Errno-style code (ECONNREFUSED, ETIMEDOUT, ...) when known
        status: HTTP status when the service answered with an error
        response_received: False when the request never got an answer
        cause: The underlying transport exception, if any
    """

    def __init__(
        self,
        endpoint: str,
        *,
        code: str | None = None,
        status: int | None = None,
        response_received: bool = False,
        cause: Exception | None = None,
    ):
        details: dict = {"endpoint": endpoint, "response_received": response_received}
        if code:
            details["code"] = code
        if status is not None:
            details["status"] = status
        if cause:
            details["cause"] = str(cause)

        if status is not None:
            message = f"Request to {endpoint} failed with status {status}"
        elif code:
            message = f"Request to {endpoint} failed: {code}"
        else:
            message = f"Request to {endpoint} failed"
        if cause:
            message += f" ({cause})"

        super().__init__(message, details)
        self.endpoint = endpoint
        self.code = code
        self.status = status
        self.response_received = response_received
        self.cause = cause


class RemotePayloadError(SessionStorageError):
    """Raised when the pool service answers with a body we cannot use."""

    def __init__(self, endpoint: str, reason: str):
        super().__init__(
            f"Malformed response from {endpoint}: {reason}",
            {"endpoint": endpoint, "reason": reason},
        )
        self.endpoint = endpoint
        self.reason = reason
