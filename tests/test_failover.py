"""Tests for failover classification and the mode switch."""

from __future__ import annotations

import asyncio
import errno
import socket

import pytest

from clover_session_storage.exceptions import RemotePayloadError, RemoteRequestError
from clover_session_storage.failover import (
    FailoverController,
    StoreMode,
    error_code,
    should_fallback,
)


class _StatusError(Exception):
    def __init__(self, status: int):
        super().__init__(f"HTTP {status}")
        self.status = status


class TestErrorCode:
    """Tests for error_code."""

    def test_explicit_code(self) -> None:
        error = RemoteRequestError("GET /sessions", code="ECONNRESET")
        assert error_code(error) == "ECONNRESET"

    def test_errno_name(self) -> None:
        error = ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused")
        assert error_code(error) == "ECONNREFUSED"

    def test_resolver_failure(self) -> None:
        error = socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        assert error_code(error) == "ENOTFOUND"

    def test_timeout(self) -> None:
        assert error_code(TimeoutError()) == "ETIMEDOUT"

    def test_unknown(self) -> None:
        assert error_code(ValueError("nope")) is None


class TestShouldFallback:
    """Tests for transient failure classification."""

    def test_none(self) -> None:
        assert should_fallback(None) is False

    @pytest.mark.parametrize("code", ["ECONNREFUSED", "ECONNRESET", "EAI_AGAIN", "ETIMEDOUT", "ENOTFOUND"])
    def test_transient_codes(self, code: str) -> None:
        error = RemoteRequestError("GET /sessions", code=code, response_received=True)
        assert should_fallback(error) is True

    def test_no_response(self) -> None:
        assert should_fallback(RemoteRequestError("GET /sessions")) is True

    @pytest.mark.parametrize("status", [500, 502, 503])
    def test_server_errors(self, status: int) -> None:
        error = RemoteRequestError("GET /sessions", status=status, response_received=True)
        assert should_fallback(error) is True

    @pytest.mark.parametrize("status", [400, 401, 404, 409])
    def test_client_errors(self, status: int) -> None:
        error = RemoteRequestError("GET /sessions", status=status, response_received=True)
        assert should_fallback(error) is False

    def test_status_attribute_on_foreign_error(self) -> None:
        assert should_fallback(_StatusError(503)) is True
        assert should_fallback(_StatusError(404)) is False

    def test_raw_connection_errors(self) -> None:
        assert should_fallback(ConnectionRefusedError(errno.ECONNREFUSED, "refused")) is True
        assert should_fallback(asyncio.TimeoutError()) is True

    def test_exception_group(self) -> None:
        """Any transient member makes the whole group transient."""
        group = ExceptionGroup(
            "connect failed",
            [ValueError("bad"), ConnectionRefusedError(errno.ECONNREFUSED, "refused")],
        )
        assert should_fallback(group) is True

    def test_exception_group_without_transient_member(self) -> None:
        group = ExceptionGroup("failed", [ValueError("bad"), KeyError("missing")])
        assert should_fallback(group) is False

    def test_code_in_message(self) -> None:
        assert should_fallback(RuntimeError("connect ECONNREFUSED 127.0.0.1:3005")) is True

    def test_client_error_with_code_in_url(self) -> None:
        """A 4xx whose message echoes a path containing a transient code stays a 4xx."""
        cause = RuntimeError("404, url=http://localhost:3005/pool/sessions/ETIMEDOUT-1/messages")
        error = RemoteRequestError(
            "GET /sessions/ETIMEDOUT-1/messages", status=404, response_received=True, cause=cause
        )

        assert "ETIMEDOUT" in str(error)
        assert should_fallback(error) is False

    def test_answered_without_status_ignores_message(self) -> None:
        error = RemoteRequestError(
            "GET /sessions/ENOTFOUND", response_received=True, cause=RuntimeError("ENOTFOUND")
        )

        assert should_fallback(error) is False

    def test_malformed_payload_propagates(self) -> None:
        assert should_fallback(RemotePayloadError("GET /sessions", "missing sessions list")) is False

    def test_plain_error(self) -> None:
        assert should_fallback(ValueError("invalid session id")) is False


class TestFailoverController:
    """Tests for the one-way mode switch."""

    def test_starts_remote(self) -> None:
        controller = FailoverController()

        assert controller.mode is StoreMode.REMOTE
        assert controller.is_local is False
        assert controller.reason is None

    def test_switch_happens_once(self) -> None:
        controller = FailoverController()
        first = RemoteRequestError("GET /sessions", code="ECONNREFUSED")
        second = RemoteRequestError("POST /sessions", code="ETIMEDOUT")

        assert controller.try_enter_local(first) is True
        assert controller.try_enter_local(second) is False
        assert controller.mode is StoreMode.LOCAL
        assert controller.reason is first

    def test_logs_switch(self, caplog: pytest.LogCaptureFixture) -> None:
        controller = FailoverController()

        with caplog.at_level("WARNING", logger="clover_session_storage.failover"):
            controller.try_enter_local(RemoteRequestError("GET /sessions", status=503))
            controller.try_enter_local(RemoteRequestError("GET /sessions", status=503))

        warnings = [r for r in caplog.records if "local fallback" in r.getMessage()]
        assert len(warnings) == 1

    async def test_concurrent_failures_switch_once(self) -> None:
        """Several failing calls racing to fall back produce one transition."""
        controller = FailoverController()

        async def fail_and_switch() -> bool:
            await asyncio.sleep(0)
            return controller.try_enter_local(RemoteRequestError("GET /sessions"))

        results = await asyncio.gather(*(fail_and_switch() for _ in range(5)))

        assert results.count(True) == 1
        assert controller.is_local
