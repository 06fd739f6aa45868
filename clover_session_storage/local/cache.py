"""
In-memory session cache mirrored to device storage.

Holds every session the store knows about: sessions created or appended to
in local mode, and full sessions cached from the pool service in remote
mode. The persisted snapshot is hydrated lazily, exactly once, and every
local mutation rewrites the whole snapshot.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping

from ..codec import first_user_text, normalize_iso, normalize_messages, session_from_record
from ..types import LocalSnapshot, Message, Session, SessionContext, utc_now_iso
from .kv_store import KeyValueStore

logger = logging.getLogger(__name__)

ACTIVE_SESSION_STORAGE_KEY = "goldenOuterGate.poolActiveSessionId"
LOCAL_SESSIONS_STORAGE_KEY = "goldenOuterGate.localSessions"


class LocalSessionCache:
    """Session map plus the local-mode snapshot.

    Contract:
    - ensure_loaded() reads the snapshot at most once per instance
    - create_session/append_messages end with a full snapshot write
    - append_messages never fails for an unknown id; it starts an empty
      session under that id instead
    """

    def __init__(self, storage: KeyValueStore) -> None:
        self.storage = storage
        self.sessions: dict[str, Session] = {}
        self.active_session_id: str | None = storage.get(ACTIVE_SESSION_STORAGE_KEY) or None
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def get(self, session_id: str) -> Session | None:
        return self.sessions.get(session_id)

    def put(self, session: Session) -> None:
        self.sessions[session.id] = session

    def ensure_loaded(self) -> None:
        """Hydrate sessions from the persisted snapshot (once)."""
        if self._loaded:
            return
        self._loaded = True

        stored = self.storage.get(LOCAL_SESSIONS_STORAGE_KEY)
        if not isinstance(stored, Mapping):
            return

        records = stored.get("sessions")
        for record in records if isinstance(records, list) else []:
            if not isinstance(record, Mapping):
                continue
            try:
                session = session_from_record(record)
            except ValueError as e:
                logger.warning(f"Skipping unreadable local session record: {e}")
                continue
            self.sessions[session.id] = session

        stored_active = stored.get("activeSessionId")
        if not self.active_session_id and isinstance(stored_active, str) and stored_active:
            self.active_session_id = stored_active

    def snapshot(self) -> LocalSnapshot:
        return LocalSnapshot(
            sessions=list(self.sessions.values()),
            active_session_id=self.active_session_id,
        )

    async def persist(self) -> None:
        """Write the full snapshot to device storage."""
        await self.storage.set(LOCAL_SESSIONS_STORAGE_KEY, self.snapshot().to_dict())

    async def set_active_session_id(self, session_id: str | None) -> None:
        self.active_session_id = session_id
        await self.storage.set(ACTIVE_SESSION_STORAGE_KEY, session_id)

    async def create_session(
        self,
        company_id: str | None = None,
        company_name: str | None = None,
        initial_messages: Iterable[Message] = (),
    ) -> Session:
        """Create a session with a fresh local id and make it active."""
        self.ensure_loaded()
        now = utc_now_iso()
        messages = normalize_messages(initial_messages)
        session = Session(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            messages=messages,
            company_id=company_id,
            company_name=company_name,
            first_user_message=first_user_text(messages),
        )
        self.sessions[session.id] = session
        self.active_session_id = session.id
        await self.persist()
        await self.storage.set(ACTIVE_SESSION_STORAGE_KEY, session.id)
        return session

    async def append_messages(
        self,
        session_id: str,
        messages: Iterable[Message],
        context: SessionContext | None = None,
    ) -> Session:
        """Append messages to a cached session.

        Unknown ids get an empty session so a conversation started against
        the pool service keeps accumulating locally after fallback.
        """
        self.ensure_loaded()
        existing = self.sessions.get(session_id)
        if existing is None:
            now = utc_now_iso()
            existing = Session(id=session_id, created_at=now, updated_at=now)
            self.sessions[session_id] = existing

        appended = normalize_messages(messages)
        existing.messages.extend(appended)
        existing.updated_at = utc_now_iso()
        if context is not None and context.company_id:
            existing.company_id = context.company_id
        if context is not None and context.company_name:
            existing.company_name = context.company_name
        if existing.first_user_message is None:
            existing.first_user_message = first_user_text(appended)

        await self.persist()
        return existing

    def list_sessions(self, limit: int) -> tuple[list[Session], bool]:
        """Most recently updated sessions first.

        There is no cursor: every call is a fresh top-N slice.

        Returns:
            (sessions, has_more)
        """
        self.ensure_loaded()
        ordered = sorted(
            self.sessions.values(),
            key=lambda session: normalize_iso(session.updated_at),
            reverse=True,
        )
        entries = ordered[: max(limit, 0)]
        return entries, len(ordered) > len(entries)
