"""
Session store for the concierge chat.

Public surface combining the pool service client, the local session cache
and the failover controller. Every operation first checks the mode: in
remote mode it calls the pool service and, if the failure is transient,
switches to local mode for good and replays the operation against the
cache; in local mode it only touches the cache.

Error tiers:
- transient failures (unreachable service, timeouts, 5xx) are absorbed by
  fallback and the caller gets a normal result
- other remote failures (4xx, malformed payloads) propagate unchanged
- insight-event decode problems never surface; the codec degrades them
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .codec import first_user_text, normalize_iso
from .config import SessionStoreConfig
from .exceptions import SessionNotFoundError
from .failover import FailoverController, StoreMode, should_fallback
from .identity import ACCOUNT_STORAGE_KEY, USER_STORAGE_KEY, IdentityBootstrap
from .local import KeyValueStore, LocalSessionCache
from .logging_utils import StorageLoggerAdapter
from .remote import RemoteSessionClient
from .summary import (
    CompanyDirectory,
    PersistedSource,
    RemoteSummarySource,
    SummaryProjector,
    SummarySource,
    merge_remote_summary,
)
from .types import (
    AnalysisFilters,
    AnalysisResponse,
    ListSessionsResult,
    Message,
    Session,
    SessionContext,
    SessionEnvelope,
    SessionSummary,
)

logger = logging.getLogger(__name__)


class SessionStore:
    """Concierge session persistence with one-way local fallback.

    Example:
        >>> kv = await JsonFileKeyValueStore.open()
        >>> async with SessionStore(kv) as store:
        ...     session = await store.create_session(company_id="comp-1")
        ...     await store.append_messages(session.id, [message])
        ...     page = await store.list_sessions()
    """

    def __init__(
        self,
        storage: KeyValueStore,
        config: SessionStoreConfig | None = None,
        companies: CompanyDirectory | None = None,
        remote: RemoteSessionClient | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            storage: Device key/value store (identifiers, snapshot)
            config: Configuration; read from the environment when omitted
            companies: Optional company lookup used to label summaries
            remote: Optional pre-built pool client
        """
        self.config = config or SessionStoreConfig.from_environment()
        self.identity = IdentityBootstrap(storage)
        self.account_id = self.identity.ensure_identifier(ACCOUNT_STORAGE_KEY)
        self.user_id = self.identity.ensure_identifier(USER_STORAGE_KEY)

        self.cache = LocalSessionCache(storage)
        self.remote = remote or RemoteSessionClient(self.config, self.account_id, self.user_id)
        self.projector = SummaryProjector(companies)
        self.failover = FailoverController()
        self.log = StorageLoggerAdapter(
            logger, {"account_id": self.account_id, "user_id": self.user_id}
        )

    async def __aenter__(self) -> SessionStore:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Flush pending identifier writes and close the pool client."""
        await self.identity.flush()
        await self.remote.close()

    async def flush(self) -> None:
        await self.identity.flush()

    # Mode

    @property
    def mode(self) -> StoreMode:
        return self.failover.mode

    @property
    def is_local(self) -> bool:
        return self.failover.is_local

    async def enable_local_fallback(self, reason: BaseException | None = None) -> None:
        """Switch to local mode. No-op if already local.

        Loads the persisted snapshot and writes it straight back so stale
        on-disk shapes are normalized.
        """
        self.identity.schedule_deferred()
        if not self.failover.try_enter_local(reason):
            return
        self.cache.ensure_loaded()
        await self.cache.persist()
        self.log.info(f"Local fallback active with {len(self.cache.sessions)} cached sessions")

    # Active session

    @property
    def active_session_id(self) -> str | None:
        return self.cache.active_session_id

    async def set_active_session_id(self, session_id: str | None) -> None:
        self.identity.schedule_deferred()
        await self.cache.set_active_session_id(session_id)
        if self.is_local:
            await self.cache.persist()

    def get_session(self, session_id: str) -> Session | None:
        """Cached session, without touching the network."""
        return self.cache.get(session_id)

    # Sessions

    async def create_session(
        self,
        company_id: str | None = None,
        company_name: str | None = None,
        initial_messages: Iterable[Message] = (),
    ) -> Session:
        """Create a session and make it the active one."""
        self.identity.schedule_deferred()
        initial = list(initial_messages)
        if self.is_local:
            return await self.cache.create_session(company_id, company_name, initial)

        try:
            envelope = await self.remote.create_session(company_id, company_name, initial)
        except Exception as error:
            if not should_fallback(error):
                raise
            await self.enable_local_fallback(error)
            return await self.cache.create_session(company_id, company_name, initial)

        session = self._ingest(envelope)
        await self.cache.set_active_session_id(session.id)
        return session

    async def append_messages(
        self,
        session_id: str,
        messages: Iterable[Message],
        context: SessionContext | None = None,
    ) -> Session:
        """Append messages to a session.

        In remote mode only the messages the service returns (server
        normalized) are appended to the cached copy.
        """
        self.identity.schedule_deferred()
        batch = list(messages)
        if self.is_local:
            return await self.cache.append_messages(session_id, batch, context)

        try:
            existing = await self._ensure_session_cached(session_id)
            if self.is_local:
                return await self.cache.append_messages(session_id, batch, context)

            envelope = await self.remote.append_messages(session_id, batch, context)
        except Exception as error:
            if not should_fallback(error):
                raise
            await self.enable_local_fallback(error)
            return await self.cache.append_messages(session_id, batch, context)

        summary = envelope.summary
        existing.messages.extend(envelope.messages)
        existing.updated_at = normalize_iso(summary.updated_at)
        if summary.company_id is not None:
            existing.company_id = summary.company_id
        if summary.company_name is not None:
            existing.company_name = summary.company_name
        if existing.first_user_message is None:
            existing.first_user_message = first_user_text(envelope.messages)

        self.cache.put(existing)
        return existing

    async def fetch_session(self, session_id: str) -> Session | None:
        """Full session with history, or None if it cannot be loaded."""
        self.identity.schedule_deferred()
        try:
            return await self._ensure_session_cached(session_id)
        except Exception as e:
            self.log.warning(f"Failed to fetch session {session_id}: {e}")
            return None

    async def list_sessions(
        self,
        cursor: str | None = None,
        limit: int | None = None,
    ) -> ListSessionsResult:
        """One page of session summaries, most recent first.

        Remote summaries also refresh the metadata of matching cached
        sessions. Local mode ignores the cursor.
        """
        self.identity.schedule_deferred()
        page_size = limit if limit is not None else self.config.page_size
        if self.is_local:
            return self._list_local(page_size)

        try:
            page = await self.remote.list_sessions(cursor, page_size)
        except Exception as error:
            if not should_fallback(error):
                raise
            await self.enable_local_fallback(error)
            return self._list_local(page_size)

        for summary in page.sessions:
            existing = self.cache.get(summary.id)
            if existing is not None:
                merge_remote_summary(existing, summary)

        return ListSessionsResult(
            sessions=[self.projector.to_summary(RemoteSummarySource(s)) for s in page.sessions],
            has_more=page.has_more,
            next_cursor=page.next_cursor,
        )

    def to_summary(self, source: SummarySource) -> SessionSummary:
        return self.projector.to_summary(source)

    # Analysis

    async def fetch_analysis_items(self, filters: AnalysisFilters | None = None) -> AnalysisResponse:
        """Passion-map items. Empty in local mode."""
        self.identity.schedule_deferred()
        if self.is_local:
            return AnalysisResponse.empty()

        try:
            return await self.remote.fetch_analysis_items(filters)
        except Exception as error:
            if not should_fallback(error):
                raise
            await self.enable_local_fallback(error)
            return AnalysisResponse.empty()

    # Internals

    def _list_local(self, limit: int) -> ListSessionsResult:
        sessions, has_more = self.cache.list_sessions(limit)
        return ListSessionsResult(
            sessions=[self.projector.to_summary(PersistedSource(s)) for s in sessions],
            has_more=has_more,
            next_cursor=None,
        )

    async def _ensure_session_cached(self, session_id: str) -> Session:
        cached = self.cache.get(session_id)
        if cached is not None:
            return cached

        if self.is_local:
            self.cache.ensure_loaded()
            local = self.cache.get(session_id)
            if local is not None:
                return local
            raise SessionNotFoundError(session_id)

        try:
            envelope = await self.remote.fetch_session_messages(session_id)
        except Exception as error:
            if should_fallback(error):
                await self.enable_local_fallback(error)
                local = self.cache.get(session_id)
                if local is not None:
                    return local
            raise
        return self._ingest(envelope)

    def _ingest(self, envelope: SessionEnvelope) -> Session:
        summary = envelope.summary
        messages = envelope.messages
        session = Session(
            id=summary.id,
            created_at=normalize_iso(summary.created_at),
            updated_at=normalize_iso(summary.updated_at),
            messages=messages,
            company_id=summary.company_id,
            company_name=summary.company_name,
            first_user_message=(
                summary.first_user_message
                if summary.first_user_message is not None
                else first_user_text(messages)
            ),
        )
        self.cache.put(session)
        return session
