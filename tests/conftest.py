"""
Shared test configuration and fixtures.

Provides an in-process stand-in for the pool service built on aiohttp's
test server, so the remote client and the session store talk real HTTP.
Failures can be injected per test with ``pool.fail_with(status)``.
"""

from __future__ import annotations

import itertools
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from clover_session_storage import MemoryKeyValueStore, SessionStoreConfig


@dataclass
class RecordedRequest:
    method: str
    path: str
    headers: dict[str, str]
    query: dict[str, str]
    body: Any = None


@dataclass
class PoolStub:
    """Minimal pool service keeping sessions in memory."""

    sessions: dict[str, dict[str, Any]] = field(default_factory=dict)
    messages: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    analysis_items: list[dict[str, Any]] = field(default_factory=list)
    requests: list[RecordedRequest] = field(default_factory=list)
    fail_status: int | None = None
    clock: str = "2025-09-23T15:00:00.000Z"
    _ids: itertools.count = field(default_factory=lambda: itertools.count(1))

    def fail_with(self, status: int | None) -> None:
        self.fail_status = status

    def app(self) -> web.Application:
        @web.middleware
        async def record(request: web.Request, handler: Any) -> web.StreamResponse:
            body = await request.json() if request.can_read_body else None
            self.requests.append(
                RecordedRequest(
                    method=request.method,
                    path=request.path,
                    headers=dict(request.headers),
                    query=dict(request.query),
                    body=body,
                )
            )
            if self.fail_status is not None:
                return web.json_response({"error": "injected failure"}, status=self.fail_status)
            return await handler(request)

        app = web.Application(middlewares=[record])
        app.router.add_post("/pool/sessions", self._create_session)
        app.router.add_get("/pool/sessions", self._list_sessions)
        app.router.add_post("/pool/sessions/{session_id}/messages", self._append_messages)
        app.router.add_get("/pool/sessions/{session_id}/messages", self._fetch_messages)
        app.router.add_get("/pool/analysis/passions", self._analysis)
        return app

    def add_session(
        self,
        session_id: str,
        messages: list[dict[str, Any]] | None = None,
        **fields: Any,
    ) -> None:
        self.sessions[session_id] = {
            "id": session_id,
            "createdAt": fields.pop("createdAt", self.clock),
            "updatedAt": fields.pop("updatedAt", self.clock),
            **fields,
        }
        self.messages[session_id] = [self._store_message(session_id, m) for m in messages or []]

    def summary(self, session_id: str) -> dict[str, Any]:
        session = self.sessions[session_id]
        messages = self.messages[session_id]
        first_user = next((m["text"] for m in messages if m["role"] == "user"), None)
        summary = {
            "accountId": "acct",
            "userId": "user",
            "title": first_user,
            "preview": messages[-1]["text"] if messages else None,
            "firstUserMessage": first_user,
            "messageCount": len(messages),
            "lastMessage": messages[-1] if messages else None,
            **session,
        }
        return {key: value for key, value in summary.items() if value is not None}

    def _store_message(self, session_id: str, message: dict[str, Any]) -> dict[str, Any]:
        stored = {
            "id": message.get("id") or f"msg-{next(self._ids)}",
            "sessionId": session_id,
            "role": message["role"],
            "text": message["text"],
            "timestamp": message.get("timestamp", self.clock),
            "createdAt": self.clock,
        }
        for key in ("tokens", "references"):
            if key in message:
                stored[key] = message[key]
        return stored

    async def _create_session(self, request: web.Request) -> web.Response:
        payload = (await request.json())["session"]
        session_id = f"sess-{next(self._ids)}"
        self.add_session(
            session_id,
            payload.get("initialMessages", []),
            **{k: payload[k] for k in ("companyId", "companyName") if k in payload},
        )
        return web.json_response(
            {"session": self.summary(session_id), "messages": self.messages[session_id]}
        )

    async def _append_messages(self, request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        if session_id not in self.sessions:
            return web.json_response({"error": "not found"}, status=404)
        payload = await request.json()
        appended = [self._store_message(session_id, m) for m in payload["messages"]]
        self.messages[session_id].extend(appended)
        self.sessions[session_id]["updatedAt"] = "2025-09-23T16:00:00.000Z"
        self.sessions[session_id].update(payload.get("context") or {})
        return web.json_response({"session": self.summary(session_id), "messages": appended})

    async def _fetch_messages(self, request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        if session_id not in self.sessions:
            return web.json_response({"error": "not found"}, status=404)
        return web.json_response(
            {"session": self.summary(session_id), "messages": self.messages[session_id]}
        )

    async def _list_sessions(self, request: web.Request) -> web.Response:
        limit = int(request.query.get("limit", "12"))
        ordered = sorted(self.sessions, key=lambda sid: self.sessions[sid]["updatedAt"], reverse=True)
        start = int(request.query.get("cursor", "0"))
        page = ordered[start : start + limit]
        has_more = start + limit < len(ordered)
        body: dict[str, Any] = {
            "sessions": [self.summary(sid) for sid in page],
            "hasMore": has_more,
        }
        if has_more:
            body["nextCursor"] = str(start + limit)
        return web.json_response(body)

    async def _analysis(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "items": self.analysis_items,
                "totalItems": len(self.analysis_items),
                "embeddingDimension": 4,
                "generatedAt": self.clock,
            }
        )


@pytest.fixture
def pool() -> PoolStub:
    return PoolStub()


@pytest.fixture
async def pool_server(pool: PoolStub) -> AsyncIterator[TestServer]:
    server = TestServer(pool.app())
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def pool_config(pool_server: TestServer) -> SessionStoreConfig:
    return SessionStoreConfig(base_url=f"http://{pool_server.host}:{pool_server.port}/")


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()
