"""
Message and insight-event codec.

Converts between the in-memory Message model, the persisted snapshot
records and the pool service's wire messages. Insight events do not have
a field of their own on the wire, so they travel as one extra entry in a
message's ``references`` list: the ``clover-insight:`` marker followed by
the event as unpadded URL-safe base64 JSON.

Decoding untrusted input never raises. An entry that fails to decode is
left in the visible references untouched and the message simply has no
insight event.
"""

from __future__ import annotations

import base64
import copy
import dataclasses
import json
import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

from .types import (
    Insight,
    InsightChange,
    InsightChangeField,
    InsightEvent,
    InsightEventType,
    InsightSourceType,
    InsightStage,
    Message,
    Session,
    SessionContext,
    Speaker,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

INSIGHT_REFERENCE_PREFIX = "clover-insight:"

E = TypeVar("E", bound=Enum)


def normalize_iso(value: Any) -> str:
    """Normalize a timestamp to ISO-8601 UTC (``2025-09-23T15:00:00.000Z``).

    Naive timestamps are taken as UTC. Anything unparsable maps to now.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return utc_now_iso()
    else:
        return utc_now_iso()

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    try:
        return parsed.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    except (ValueError, OverflowError):
        return utc_now_iso()


def normalize_messages(messages: Iterable[Message]) -> list[Message]:
    """Copy messages with normalized timestamps.

    Nested structures (references, insight events) are deep-copied so the
    caller's objects and the cached ones never alias.
    """
    return [
        dataclasses.replace(copy.deepcopy(message), timestamp=normalize_iso(message.timestamp))
        for message in messages
    ]


def first_user_text(messages: Iterable[Message]) -> str | None:
    for message in messages:
        if message.speaker is Speaker.USER:
            return message.text
    return None


# Insight events


def encode_insight_event_reference(event: InsightEvent) -> str:
    """Encode an insight event as a marker-prefixed reference string.

    Falls back to the bare marker if the event cannot be serialized.
    """
    try:
        serialized = json.dumps(event.to_dict(), separators=(",", ":"), ensure_ascii=False)
        payload = base64.urlsafe_b64encode(serialized.encode("utf-8")).decode("ascii")
    except (TypeError, ValueError, AttributeError) as e:
        logger.debug(f"Could not encode insight event: {e}")
        return INSIGHT_REFERENCE_PREFIX
    return f"{INSIGHT_REFERENCE_PREFIX}{payload.rstrip('=')}"


def decode_insight_event(encoded: str) -> InsightEvent | None:
    """Decode the payload part of an insight reference (marker already removed)."""
    if not encoded:
        return None
    try:
        padded = encoded + "=" * (-len(encoded) % 4)
        raw = json.loads(base64.urlsafe_b64decode(padded).decode("utf-8"))
        return parse_insight_event(raw)
    except (ValueError, RecursionError):
        return None


def _enum_member(enum_cls: type[E], value: Any) -> E | None:
    if not isinstance(value, str):
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def parse_insight(raw: Any) -> Insight | None:
    """Validate an insight mapping. Invalid insights are discarded whole."""
    if not isinstance(raw, Mapping):
        return None

    insight_id = raw.get("id")
    title = raw.get("title")
    if not isinstance(insight_id, str) or not insight_id.strip():
        return None
    if not isinstance(title, str) or not title.strip():
        return None

    stage = _enum_member(InsightStage, raw.get("stage"))
    source_type = _enum_member(InsightSourceType, raw.get("sourceType"))
    if stage is None or source_type is None:
        return None

    captured_at = raw.get("capturedAtIso")
    return Insight(
        id=insight_id.strip(),
        title=title.strip(),
        stage=stage,
        source_type=source_type,
        summary=_optional_str(raw.get("summary")),
        recommended_workspace=_optional_str(raw.get("recommendedWorkspace")),
        captured_at_iso=normalize_iso(captured_at) if isinstance(captured_at, str) else None,
        assigned_company_id=_optional_str(raw.get("assignedCompanyId")),
    )


def parse_insight_change(raw: Any) -> InsightChange | None:
    if not isinstance(raw, Mapping):
        return None
    field = _enum_member(InsightChangeField, raw.get("field"))
    if field is None:
        return None
    return InsightChange(
        field=field,
        from_value=_optional_str(raw.get("from")),
        to_value=_optional_str(raw.get("to")),
    )


def parse_insight_event(raw: Any) -> InsightEvent | None:
    """Validate an already-parsed insight event.

    Malformed change entries are dropped; anything else wrong yields None.
    """
    if not isinstance(raw, Mapping):
        return None

    event_type = _enum_member(InsightEventType, raw.get("type"))
    if event_type is None:
        return None

    insight = parse_insight(raw.get("insight"))
    if insight is None:
        return None

    raw_changes = raw.get("changes")
    changes = None
    if isinstance(raw_changes, list):
        changes = [
            change
            for change in (parse_insight_change(entry) for entry in raw_changes)
            if change is not None
        ]

    return InsightEvent(
        type=event_type,
        insight=insight,
        note=_optional_str(raw.get("note")),
        changes=changes,
    )


def extract_insight_event(
    references: Iterable[str] | None,
) -> tuple[InsightEvent | None, list[str] | None]:
    """Pull the first decodable insight reference out of a reference list.

    Returns:
        (event or None, remaining references or None when none remain)
    """
    if not references:
        return None, None

    remaining: list[str] = []
    event: InsightEvent | None = None
    for reference in references:
        if event is None and reference.startswith(INSIGHT_REFERENCE_PREFIX):
            decoded = decode_insight_event(reference[len(INSIGHT_REFERENCE_PREFIX) :])
            if decoded is not None:
                event = decoded
                continue
        remaining.append(reference)

    return event, (remaining or None)


# Wire mapping


def messages_to_wire(messages: Iterable[Message]) -> list[dict[str, Any]]:
    """Build pool service message payloads.

    An attached insight event is appended to ``references`` in encoded form
    unless an identical string is already present.
    """
    payloads: list[dict[str, Any]] = []
    for message in messages:
        references = list(message.references or [])
        if message.insight_event is not None:
            encoded = encode_insight_event_reference(message.insight_event)
            if encoded not in references:
                references.append(encoded)

        payload: dict[str, Any] = {
            "id": message.id,
            "role": "assistant" if message.speaker is Speaker.ASSISTANT else "user",
            "text": message.text,
            "timestamp": normalize_iso(message.timestamp),
        }
        if message.tokens is not None:
            payload["tokens"] = message.tokens
        if references:
            payload["references"] = references
        payloads.append(payload)
    return payloads


def _string_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [entry for entry in value if isinstance(entry, str)]


def message_from_wire(payload: Mapping[str, Any]) -> Message:
    """Map a pool service message back to the internal model.

    Raises:
        ValueError: If the payload is not a mapping
    """
    if not isinstance(payload, Mapping):
        raise ValueError("message payload is not an object")

    event, references = extract_insight_event(_string_list(payload.get("references")))
    tokens = payload.get("tokens")
    return Message(
        id=str(payload.get("id", "")),
        speaker=Speaker.ASSISTANT if payload.get("role") == "assistant" else Speaker.USER,
        text=_optional_str(payload.get("text")) or "",
        timestamp=normalize_iso(payload.get("timestamp")),
        tokens=tokens if isinstance(tokens, int) and not isinstance(tokens, bool) else None,
        references=references,
        insight_event=event,
    )


def context_to_wire(context: SessionContext | None) -> dict[str, str] | None:
    """Company context for an append request; None when nothing is set."""
    if context is None:
        return None
    payload: dict[str, str] = {}
    if context.company_id:
        payload["companyId"] = context.company_id
    if context.company_name:
        payload["companyName"] = context.company_name
    return payload or None


# Snapshot records


def message_from_record(record: Mapping[str, Any]) -> Message:
    """Rebuild a message from the local snapshot.

    Older snapshots label assistant turns ``clover``.
    """
    speaker = record.get("speaker")
    tokens = record.get("tokens")
    return Message(
        id=str(record.get("id", "")),
        speaker=Speaker.ASSISTANT if speaker in ("assistant", "clover") else Speaker.USER,
        text=_optional_str(record.get("text")) or "",
        timestamp=normalize_iso(record.get("timestamp")),
        tokens=tokens if isinstance(tokens, int) and not isinstance(tokens, bool) else None,
        references=_string_list(record.get("references")),
        insight_event=parse_insight_event(record.get("insightEvent")),
    )


def session_from_record(record: Mapping[str, Any]) -> Session:
    """Rebuild a session from the local snapshot.

    Accepts the ``createdAtIso``/``updatedAtIso`` keys of older snapshots.

    Raises:
        ValueError: If the record has no usable id
    """
    session_id = record.get("id")
    if not isinstance(session_id, str) or not session_id:
        raise ValueError("session record has no id")

    raw_messages = record.get("messages")
    messages = [
        message_from_record(entry)
        for entry in (raw_messages if isinstance(raw_messages, list) else [])
        if isinstance(entry, Mapping)
    ]
    return Session(
        id=session_id,
        created_at=normalize_iso(record.get("createdAt", record.get("createdAtIso"))),
        updated_at=normalize_iso(record.get("updatedAt", record.get("updatedAtIso"))),
        messages=messages,
        company_id=_optional_str(record.get("companyId")),
        company_name=_optional_str(record.get("companyName")),
        first_user_message=_optional_str(record.get("firstUserMessage")),
    )
