"""
Data model for concierge chat sessions.

Sessions, messages and the insight events embedded in them, plus the
payload shapes exchanged with the pool service. Serialized forms use the
camelCase keys shared by the persisted snapshot and the wire protocol.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class Speaker(Enum):
    """Author of a message."""

    USER = "user"
    ASSISTANT = "assistant"


class InsightStage(Enum):
    CAPTURED = "captured"
    PROCESSING = "processing"
    READY = "ready"
    ASSIGNED = "assigned"


class InsightSourceType(Enum):
    CONVERSATION = "conversation"
    DOCUMENT = "document"
    VOICE = "voice"
    INTEGRATION = "integration"


class InsightEventType(Enum):
    CREATED = "created"
    UPDATED = "updated"


class InsightChangeField(Enum):
    """Insight fields an update event may report as changed."""

    TITLE = "title"
    SUMMARY = "summary"
    STAGE = "stage"
    RECOMMENDED_WORKSPACE = "recommendedWorkspace"
    ASSIGNED_COMPANY_ID = "assignedCompanyId"
    CAPTURED_AT_ISO = "capturedAtIso"
    SOURCE_TYPE = "sourceType"


def utc_now_iso() -> str:
    """Current time as ISO-8601 UTC with millisecond precision and a Z suffix."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is None."""
    return {key: value for key, value in data.items() if value is not None}


@dataclass
class Insight:
    """Snapshot of a captured idea or record."""

    id: str
    title: str
    stage: InsightStage
    source_type: InsightSourceType
    summary: str | None = None
    recommended_workspace: str | None = None
    captured_at_iso: str | None = None
    assigned_company_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "id": self.id,
                "title": self.title,
                "stage": self.stage.value,
                "sourceType": self.source_type.value,
                "summary": self.summary,
                "recommendedWorkspace": self.recommended_workspace,
                "capturedAtIso": self.captured_at_iso,
                "assignedCompanyId": self.assigned_company_id,
            }
        )


@dataclass
class InsightChange:
    field: InsightChangeField
    from_value: str | None = None
    to_value: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact({"field": self.field.value, "from": self.from_value, "to": self.to_value})


@dataclass
class InsightEvent:
    """Creation or update notice for an insight, carried inside a message."""

    type: InsightEventType
    insight: Insight
    note: str | None = None
    changes: list[InsightChange] | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "type": self.type.value,
                "insight": self.insight.to_dict(),
                "note": self.note,
                "changes": (
                    [change.to_dict() for change in self.changes]
                    if self.changes is not None
                    else None
                ),
            }
        )


@dataclass
class Message:
    """One turn in a session."""

    id: str
    text: str
    timestamp: str
    speaker: Speaker
    tokens: int | None = None
    references: list[str] | None = None
    insight_event: InsightEvent | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the local snapshot."""
        return _compact(
            {
                "id": self.id,
                "speaker": self.speaker.value,
                "text": self.text,
                "timestamp": self.timestamp,
                "tokens": self.tokens,
                "references": list(self.references) if self.references is not None else None,
                "insightEvent": self.insight_event.to_dict() if self.insight_event else None,
            }
        )


@dataclass
class Session:
    """A conversation thread.

    Messages are append-only: the store never reorders or truncates them.
    ``first_user_message`` is set once and never overwritten.
    """

    id: str
    created_at: str
    updated_at: str
    messages: list[Message] = field(default_factory=list)
    company_id: str | None = None
    company_name: str | None = None
    first_user_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "id": self.id,
                "createdAt": self.created_at,
                "updatedAt": self.updated_at,
                "messages": [message.to_dict() for message in self.messages],
                "companyId": self.company_id,
                "companyName": self.company_name,
                "firstUserMessage": self.first_user_message,
            }
        )


@dataclass
class SessionContext:
    """Workspace labels sent along with appended messages."""

    company_id: str | None = None
    company_name: str | None = None


@dataclass
class SessionSummary:
    """Read-only list-view projection of a session."""

    id: str
    created_at: str
    updated_at: str
    title: str
    preview: str
    message_count: int
    company_id: str | None = None
    company_name: str | None = None
    last_message: Message | None = None


@dataclass
class ListSessionsResult:
    sessions: list[SessionSummary]
    has_more: bool
    next_cursor: str | None = None


@dataclass
class LocalSnapshot:
    """Entire durable state of local mode."""

    sessions: list[Session] = field(default_factory=list)
    active_session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "activeSessionId": self.active_session_id,
                "sessions": [session.to_dict() for session in self.sessions],
            }
        )


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


@dataclass
class RemoteSessionSummary:
    """Session summary as returned by the pool service.

    ``last_message`` stays in wire form; the codec decodes it.
    """

    id: str
    created_at: str
    updated_at: str
    message_count: int = 0
    company_id: str | None = None
    company_name: str | None = None
    title: str | None = None
    preview: str | None = None
    first_user_message: str | None = None
    last_message: dict[str, Any] | None = None

    @classmethod
    def from_wire(cls, data: Any) -> RemoteSessionSummary:
        """Parse a summary payload.

        Raises:
            ValueError: If the payload is not an object or lacks an id
        """
        if not isinstance(data, dict):
            raise ValueError("session summary is not an object")
        session_id = data.get("id")
        if not isinstance(session_id, str) or not session_id:
            raise ValueError("session summary has no id")
        message_count = data.get("messageCount")
        last_message = data.get("lastMessage")
        return cls(
            id=session_id,
            created_at=str(data.get("createdAt", "")),
            updated_at=str(data.get("updatedAt", "")),
            message_count=message_count if isinstance(message_count, int) else 0,
            company_id=_optional_str(data.get("companyId")),
            company_name=_optional_str(data.get("companyName")),
            title=_optional_str(data.get("title")),
            preview=_optional_str(data.get("preview")),
            first_user_message=_optional_str(data.get("firstUserMessage")),
            last_message=last_message if isinstance(last_message, dict) else None,
        )


@dataclass
class SessionEnvelope:
    """``{session, messages}`` response from the pool service."""

    summary: RemoteSessionSummary
    messages: list[Message]


@dataclass
class RemoteSessionPage:
    sessions: list[RemoteSessionSummary]
    has_more: bool
    next_cursor: str | None = None


@dataclass
class AnalysisFilters:
    """Query options for the passion-map analysis endpoint."""

    limit: int | None = None
    status: str | None = None
    since: str | None = None
    include_files: bool | None = None
    include_messages: bool | None = None

    def to_params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.limit is not None:
            params["limit"] = str(self.limit)
        if self.status:
            params["status"] = self.status
        if self.since:
            params["since"] = self.since
        if self.include_files is not None:
            params["includeFiles"] = "true" if self.include_files else "false"
        if self.include_messages is not None:
            params["includeMessages"] = "true" if self.include_messages else "false"
        return params


@dataclass
class AnalysisItem:
    """A pool message or file with its embedding."""

    id: str
    kind: str
    status: str
    created_at: str
    text: str
    embedding: list[float] = field(default_factory=list)
    session_id: str | None = None
    filename: str | None = None
    mime_type: str | None = None
    size_bytes: int | None = None
    source: str | None = None

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> AnalysisItem:
        embedding = data.get("embedding")
        size_bytes = data.get("sizeBytes")
        return cls(
            id=str(data["id"]),
            kind=str(data.get("kind", "message")),
            status=str(data.get("status", "")),
            created_at=str(data.get("createdAt", "")),
            text=str(data.get("text", "")),
            embedding=[float(value) for value in embedding] if isinstance(embedding, list) else [],
            session_id=_optional_str(data.get("sessionId")),
            filename=_optional_str(data.get("filename")),
            mime_type=_optional_str(data.get("mimeType")),
            size_bytes=size_bytes if isinstance(size_bytes, int) else None,
            source=_optional_str(data.get("source")),
        )


@dataclass
class AnalysisResponse:
    items: list[AnalysisItem]
    total_items: int
    embedding_dimension: int
    generated_at: str

    @classmethod
    def empty(cls) -> AnalysisResponse:
        """Well-formed response with no items."""
        return cls(items=[], total_items=0, embedding_dimension=0, generated_at=utc_now_iso())
