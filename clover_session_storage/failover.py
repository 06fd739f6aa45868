"""Failover from the pool service to the local session cache.

Decides which remote failures are transient (the service is down or
unreachable) and owns the one-way switch into local mode. Once the store
is local it stays local for the life of the process; nothing probes the
pool service again.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import socket
from enum import Enum

import aiohttp

from .exceptions import RemoteRequestError

logger = logging.getLogger(__name__)

TRANSIENT_NETWORK_CODES = frozenset(
    {"ECONNREFUSED", "ECONNRESET", "EAI_AGAIN", "ETIMEDOUT", "ENOTFOUND"}
)

# getaddrinfo failures report negative codes that errno does not name
_RESOLVER_CODES = {
    socket.EAI_AGAIN: "EAI_AGAIN",
    socket.EAI_NONAME: "ENOTFOUND",
}


class StoreMode(Enum):
    """Where session operations go."""

    REMOTE = "remote"
    LOCAL = "local"


def error_code(error: BaseException) -> str | None:
    """Best-effort errno-style code for an exception."""
    code = getattr(error, "code", None)
    if isinstance(code, str) and code:
        return code

    if isinstance(error, socket.gaierror):
        return _RESOLVER_CODES.get(error.errno)
    if isinstance(error, OSError) and error.errno is not None:
        name = errno.errorcode.get(error.errno)
        if name:
            return name
    if isinstance(error, TimeoutError):
        return "ETIMEDOUT"

    # aiohttp keeps the socket error on os_error for connector failures
    os_error = getattr(error, "os_error", None)
    if isinstance(os_error, OSError) and os_error is not error:
        return error_code(os_error)
    return None


def _status_code(error: BaseException) -> int | None:
    for attr in ("status", "status_code"):
        status = getattr(error, attr, None)
        if isinstance(status, int):
            return status
    response = getattr(error, "response", None)
    if response is not None:
        status = getattr(response, "status", None) or getattr(response, "status_code", None)
        if isinstance(status, int):
            return status
    return None


def _no_response(error: BaseException) -> bool:
    if isinstance(error, RemoteRequestError):
        return not error.response_received
    if isinstance(error, aiohttp.ClientResponseError):
        return False
    return isinstance(
        error, (aiohttp.ClientConnectionError, ConnectionError, asyncio.TimeoutError)
    )


def should_fallback(error: BaseException | None) -> bool:
    """True when an error means the pool service is unavailable.

    Client errors (4xx) and malformed payloads are real failures and are
    not masked by fallback.
    """
    if error is None:
        return False

    code = error_code(error)
    if code in TRANSIENT_NETWORK_CODES:
        return True

    if _no_response(error):
        return True

    status = _status_code(error)
    if status is not None and status >= 500:
        return True

    if isinstance(error, BaseExceptionGroup):
        return any(should_fallback(entry) for entry in error.exceptions)

    # Answered requests are decided by status alone
    if status is not None or (isinstance(error, RemoteRequestError) and error.response_received):
        return False

    message = str(error)
    return any(transient in message for transient in TRANSIENT_NETWORK_CODES)


class FailoverController:
    """Holds the store mode and performs the one-way switch to local.

    try_enter_local() is a compare-and-swap: it has no await between the
    check and the assignment, so under asyncio exactly one caller wins the
    transition even when several remote calls fail together.
    """

    def __init__(self, mode: StoreMode = StoreMode.REMOTE) -> None:
        self._mode = mode
        self.reason: BaseException | None = None

    @property
    def mode(self) -> StoreMode:
        return self._mode

    @property
    def is_local(self) -> bool:
        return self._mode is StoreMode.LOCAL

    def try_enter_local(self, reason: BaseException | None = None) -> bool:
        """Switch to local mode.

        Returns:
            True for the call that performed the switch, False if the
            store was already local
        """
        if self._mode is StoreMode.LOCAL:
            return False
        self._mode = StoreMode.LOCAL
        self.reason = reason
        logger.warning(f"Switching to local fallback for concierge sessions: {reason}")
        return True
