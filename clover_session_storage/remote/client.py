"""
HTTP client for the pool session service.

Thin wrapper over aiohttp: builds requests, tags them with the device
identifiers, and turns responses into typed envelopes. It never retries;
every transport or HTTP failure surfaces as RemoteRequestError and the
session store decides whether to fall back.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

import aiohttp

from ..codec import context_to_wire, message_from_wire, messages_to_wire
from ..config import SessionStoreConfig
from ..exceptions import RemotePayloadError, RemoteRequestError
from ..failover import error_code
from ..types import (
    AnalysisFilters,
    AnalysisItem,
    AnalysisResponse,
    Message,
    RemoteSessionPage,
    RemoteSessionSummary,
    SessionContext,
    SessionEnvelope,
)

logger = logging.getLogger(__name__)


class RemoteSessionClient:
    """Client for the pool service session endpoints.

    Example:
        >>> async with RemoteSessionClient(config, account_id, user_id) as client:
        ...     page = await client.list_sessions(limit=12)
    """

    def __init__(
        self,
        config: SessionStoreConfig,
        account_id: str,
        user_id: str,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Store configuration (base URL and timeout are read once)
            account_id: Value for the x-account-id header
            user_id: Value for the x-user-id header
            session: Optional aiohttp session to use instead of an owned one
        """
        self.base_url = config.pool_url
        self.timeout = aiohttp.ClientTimeout(total=config.timeout_seconds)
        self.account_id = account_id
        self.user_id = user_id
        self._session = session
        self._owns_session = session is None

    @property
    def headers(self) -> dict[str, str]:
        return {"x-account-id": self.account_id, "x-user-id": self.user_id}

    async def __aenter__(self) -> RemoteSessionClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        endpoint = f"{method} {path}"
        session = self._ensure_session()
        try:
            async with session.request(
                method,
                f"{self.base_url}{path}",
                json=json_body,
                params=params,
                headers=self.headers,
                timeout=self.timeout,
            ) as response:
                response.raise_for_status()
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise RemotePayloadError(endpoint, f"invalid JSON body: {e}") from e
        except aiohttp.ClientResponseError as e:
            raise RemoteRequestError(
                endpoint, status=e.status, response_received=True, cause=e
            ) from e
        except (aiohttp.ClientError, TimeoutError, OSError) as e:
            logger.debug(f"{endpoint} failed before a response: {e!r}")
            raise RemoteRequestError(
                endpoint, code=error_code(e), response_received=False, cause=e
            ) from e

    # Sessions

    async def create_session(
        self,
        company_id: str | None = None,
        company_name: str | None = None,
        initial_messages: Iterable[Message] = (),
    ) -> SessionEnvelope:
        """POST /sessions."""
        session_payload: dict[str, Any] = {"initialMessages": messages_to_wire(initial_messages)}
        if company_id is not None:
            session_payload["companyId"] = company_id
        if company_name is not None:
            session_payload["companyName"] = company_name

        data = await self._request("POST", "/sessions", json_body={"session": session_payload})
        return self._parse_envelope("POST /sessions", data)

    async def append_messages(
        self,
        session_id: str,
        messages: Iterable[Message],
        context: SessionContext | None = None,
    ) -> SessionEnvelope:
        """POST /sessions/{id}/messages.

        The response carries the full session summary and only the messages
        appended by this call, as normalized by the server.
        """
        body: dict[str, Any] = {"messages": messages_to_wire(messages)}
        context_payload = context_to_wire(context)
        if context_payload is not None:
            body["context"] = context_payload

        path = f"/sessions/{session_id}/messages"
        data = await self._request("POST", path, json_body=body)
        return self._parse_envelope(f"POST {path}", data)

    async def list_sessions(self, cursor: str | None = None, limit: int = 12) -> RemoteSessionPage:
        """GET /sessions?limit=&cursor=."""
        params = {"limit": str(limit)}
        if cursor:
            params["cursor"] = cursor

        data = await self._request("GET", "/sessions", params=params)
        if not isinstance(data, dict) or not isinstance(data.get("sessions"), list):
            raise RemotePayloadError("GET /sessions", "missing sessions list")

        try:
            sessions = [RemoteSessionSummary.from_wire(entry) for entry in data["sessions"]]
        except ValueError as e:
            raise RemotePayloadError("GET /sessions", str(e)) from e

        next_cursor = data.get("nextCursor")
        return RemoteSessionPage(
            sessions=sessions,
            has_more=bool(data.get("hasMore", False)),
            next_cursor=next_cursor if isinstance(next_cursor, str) and next_cursor else None,
        )

    async def fetch_session_messages(self, session_id: str) -> SessionEnvelope:
        """GET /sessions/{id}/messages (full history)."""
        path = f"/sessions/{session_id}/messages"
        data = await self._request("GET", path)
        return self._parse_envelope(f"GET {path}", data)

    # Analysis

    async def fetch_analysis_items(self, filters: AnalysisFilters | None = None) -> AnalysisResponse:
        """GET /analysis/passions for the passion map."""
        endpoint = "GET /analysis/passions"
        data = await self._request(
            "GET", "/analysis/passions", params=(filters or AnalysisFilters()).to_params()
        )
        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            raise RemotePayloadError(endpoint, "missing items list")

        try:
            items = [AnalysisItem.from_wire(entry) for entry in data["items"]]
        except (KeyError, TypeError, ValueError) as e:
            raise RemotePayloadError(endpoint, f"invalid analysis item: {e}") from e

        total = data.get("totalItems")
        dimension = data.get("embeddingDimension")
        generated_at = data.get("generatedAt")
        return AnalysisResponse(
            items=items,
            total_items=total if isinstance(total, int) else len(items),
            embedding_dimension=dimension if isinstance(dimension, int) else 0,
            generated_at=generated_at if isinstance(generated_at, str) else "",
        )

    def _parse_envelope(self, endpoint: str, data: Any) -> SessionEnvelope:
        if not isinstance(data, dict):
            raise RemotePayloadError(endpoint, "response is not an object")

        raw_messages = data.get("messages")
        if not isinstance(raw_messages, list):
            raise RemotePayloadError(endpoint, "missing messages list")

        try:
            summary = RemoteSessionSummary.from_wire(data.get("session"))
            messages = [message_from_wire(entry) for entry in raw_messages]
        except ValueError as e:
            raise RemotePayloadError(endpoint, str(e)) from e

        return SessionEnvelope(summary=summary, messages=messages)
