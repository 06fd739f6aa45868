"""Tests for the local session cache."""

from __future__ import annotations

import uuid

from clover_session_storage.local import (
    ACTIVE_SESSION_STORAGE_KEY,
    LOCAL_SESSIONS_STORAGE_KEY,
    LocalSessionCache,
    MemoryKeyValueStore,
)
from clover_session_storage.types import Message, Session, SessionContext, Speaker


def _message(message_id: str, text: str, speaker: Speaker = Speaker.USER) -> Message:
    return Message(id=message_id, text=text, timestamp="2025-09-23T15:00:00Z", speaker=speaker)


class TestHydration:
    """Tests for loading the persisted snapshot."""

    def test_loads_once(self) -> None:
        kv = MemoryKeyValueStore(
            {
                LOCAL_SESSIONS_STORAGE_KEY: {
                    "activeSessionId": "sess-1",
                    "sessions": [
                        {
                            "id": "sess-1",
                            "createdAtIso": "2025-09-20T10:00:00Z",
                            "updatedAtIso": "2025-09-21T10:00:00Z",
                            "messages": [],
                        },
                        {"messages": []},
                        "junk",
                    ],
                }
            }
        )
        cache = LocalSessionCache(kv)

        cache.ensure_loaded()
        cache.sessions.clear()
        cache.ensure_loaded()

        assert cache.loaded
        assert cache.sessions == {}
        assert cache.active_session_id == "sess-1"

    def test_legacy_records(self) -> None:
        kv = MemoryKeyValueStore(
            {
                LOCAL_SESSIONS_STORAGE_KEY: {
                    "sessions": [
                        {
                            "id": "sess-1",
                            "createdAtIso": "2025-09-20T10:00:00Z",
                            "updatedAtIso": "2025-09-21T10:00:00Z",
                            "messages": [],
                        },
                        {"messages": []},
                    ],
                }
            }
        )
        cache = LocalSessionCache(kv)

        cache.ensure_loaded()

        assert list(cache.sessions) == ["sess-1"]
        assert cache.sessions["sess-1"].updated_at == "2025-09-21T10:00:00.000Z"

    def test_active_key_wins_over_snapshot(self) -> None:
        kv = MemoryKeyValueStore(
            {
                ACTIVE_SESSION_STORAGE_KEY: "sess-2",
                LOCAL_SESSIONS_STORAGE_KEY: {"activeSessionId": "sess-1", "sessions": []},
            }
        )
        cache = LocalSessionCache(kv)

        cache.ensure_loaded()

        assert cache.active_session_id == "sess-2"

    def test_garbage_snapshot_ignored(self) -> None:
        cache = LocalSessionCache(MemoryKeyValueStore({LOCAL_SESSIONS_STORAGE_KEY: "garbage"}))

        cache.ensure_loaded()

        assert cache.sessions == {}


class TestCreateSession:
    """Tests for creating sessions locally."""

    async def test_create_persists_and_activates(self) -> None:
        kv = MemoryKeyValueStore()
        cache = LocalSessionCache(kv)

        session = await cache.create_session(
            company_id="comp-1",
            company_name="Wellness Retreats",
            initial_messages=[_message("m1", "Plan a retreat")],
        )

        assert uuid.UUID(session.id)
        assert session.first_user_message == "Plan a retreat"
        assert session.messages[0].timestamp == "2025-09-23T15:00:00.000Z"
        assert cache.active_session_id == session.id
        assert kv.get(ACTIVE_SESSION_STORAGE_KEY) == session.id

        snapshot = kv.get(LOCAL_SESSIONS_STORAGE_KEY)
        assert snapshot["activeSessionId"] == session.id
        assert snapshot["sessions"][0]["id"] == session.id
        assert snapshot["sessions"][0]["companyName"] == "Wellness Retreats"

    async def test_create_without_user_message(self) -> None:
        cache = LocalSessionCache(MemoryKeyValueStore())

        session = await cache.create_session(
            initial_messages=[_message("m1", "Welcome back", Speaker.ASSISTANT)]
        )

        assert session.first_user_message is None


class TestAppendMessages:
    """Tests for appending locally."""

    async def test_unknown_id_creates_session(self) -> None:
        """A session started remotely keeps accumulating under its server id."""
        kv = MemoryKeyValueStore()
        cache = LocalSessionCache(kv)

        session = await cache.append_messages("sess-remote", [_message("m1", "Still there?")])

        assert session.id == "sess-remote"
        assert [m.text for m in session.messages] == ["Still there?"]
        assert session.first_user_message == "Still there?"
        assert kv.get(LOCAL_SESSIONS_STORAGE_KEY)["sessions"][0]["id"] == "sess-remote"

    async def test_first_user_message_set_once(self) -> None:
        cache = LocalSessionCache(MemoryKeyValueStore())
        await cache.append_messages("sess-1", [_message("m1", "First question")])

        session = await cache.append_messages("sess-1", [_message("m2", "Second question")])

        assert session.first_user_message == "First question"
        assert len(session.messages) == 2

    async def test_context_backfills_company(self) -> None:
        cache = LocalSessionCache(MemoryKeyValueStore())
        await cache.append_messages(
            "sess-1", [_message("m1", "hi")], SessionContext(company_id="comp-1", company_name="Acme")
        )

        session = await cache.append_messages(
            "sess-1", [_message("m2", "again")], SessionContext(company_id="", company_name=None)
        )

        assert session.company_id == "comp-1"
        assert session.company_name == "Acme"

    async def test_appended_messages_are_copies(self) -> None:
        cache = LocalSessionCache(MemoryKeyValueStore())
        message = Message(
            id="m1",
            text="hi",
            timestamp="2025-09-23T15:00:00Z",
            speaker=Speaker.USER,
            references=["doc-1"],
        )

        await cache.append_messages("sess-1", [message])
        message.references.append("doc-2")

        assert cache.get("sess-1").messages[0].references == ["doc-1"]


class TestListSessions:
    """Tests for the local session listing."""

    def _cache_with(self, *updated: str) -> LocalSessionCache:
        cache = LocalSessionCache(MemoryKeyValueStore())
        cache.ensure_loaded()
        for index, updated_at in enumerate(updated):
            cache.put(Session(id=f"sess-{index}", created_at=updated_at, updated_at=updated_at))
        return cache

    def test_most_recent_first(self) -> None:
        cache = self._cache_with(
            "2025-09-20T10:00:00Z", "2025-09-22T10:00:00+02:00", "2025-09-21T10:00:00Z"
        )

        sessions, has_more = cache.list_sessions(12)

        assert [s.id for s in sessions] == ["sess-1", "sess-2", "sess-0"]
        assert has_more is False

    def test_has_more_when_truncated(self) -> None:
        cache = self._cache_with(
            "2025-09-20T10:00:00Z", "2025-09-21T10:00:00Z", "2025-09-22T10:00:00Z"
        )

        sessions, has_more = cache.list_sessions(2)

        assert [s.id for s in sessions] == ["sess-2", "sess-1"]
        assert has_more is True

    def test_listing_is_idempotent(self) -> None:
        cache = self._cache_with("2025-09-20T10:00:00Z", "2025-09-21T10:00:00Z")

        assert cache.list_sessions(12) == cache.list_sessions(12)
