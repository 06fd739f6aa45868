"""
Session summaries for list views.

Summaries are built from one of two sources: a full session held in the
cache, or a summary payload from the pool service (which precomputes
title and preview). The source is an explicit tagged union so callers
say which shape they hand in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from .codec import message_from_wire, normalize_iso
from .types import RemoteSessionSummary, Session, SessionSummary

SESSION_SUMMARY_TITLE_FALLBACK = "Untitled Chat"
SESSION_SUMMARY_PREVIEW_FALLBACK = "No messages yet."


class CompanyDirectory(Protocol):
    """Looks up display names of workspace companies."""

    def company_name(self, company_id: str) -> str | None:
        ...


@dataclass(frozen=True)
class PersistedSource:
    session: Session


@dataclass(frozen=True)
class RemoteSummarySource:
    summary: RemoteSessionSummary


SummarySource = PersistedSource | RemoteSummarySource


def _stripped(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


class SummaryProjector:
    """Builds SessionSummary views.

    Company names are re-resolved through the directory when one is given,
    so a renamed company shows its current name.
    """

    def __init__(self, companies: CompanyDirectory | None = None) -> None:
        self.companies = companies

    def resolve_company_name(self, company_id: str | None) -> str | None:
        if not company_id or self.companies is None:
            return None
        return self.companies.company_name(company_id)

    def to_summary(self, source: SummarySource) -> SessionSummary:
        match source:
            case PersistedSource(session=session):
                return self._from_persisted(session)
            case RemoteSummarySource(summary=summary):
                return self._from_remote(summary)
        raise TypeError(f"Unsupported summary source: {type(source).__name__}")

    def _from_persisted(self, session: Session) -> SessionSummary:
        company_name = self.resolve_company_name(session.company_id) or session.company_name
        last_message = session.messages[-1] if session.messages else None

        if last_message is not None:
            preview = last_message.text
        elif session.first_user_message is not None:
            preview = session.first_user_message
        else:
            preview = SESSION_SUMMARY_PREVIEW_FALLBACK

        return SessionSummary(
            id=session.id,
            created_at=session.created_at,
            updated_at=session.updated_at,
            company_id=session.company_id,
            company_name=company_name,
            title=_stripped(session.first_user_message) or SESSION_SUMMARY_TITLE_FALLBACK,
            preview=preview,
            message_count=len(session.messages),
            last_message=last_message,
        )

    def _from_remote(self, summary: RemoteSessionSummary) -> SessionSummary:
        company_name = self.resolve_company_name(summary.company_id) or summary.company_name

        if summary.preview is not None:
            preview = summary.preview
        elif summary.first_user_message is not None:
            preview = summary.first_user_message
        else:
            preview = SESSION_SUMMARY_PREVIEW_FALLBACK

        title = (
            _stripped(summary.title)
            or _stripped(summary.first_user_message)
            or SESSION_SUMMARY_TITLE_FALLBACK
        )
        last_message = message_from_wire(summary.last_message) if summary.last_message else None

        return SessionSummary(
            id=summary.id,
            created_at=normalize_iso(summary.created_at),
            updated_at=normalize_iso(summary.updated_at),
            company_id=summary.company_id,
            company_name=company_name,
            title=title,
            preview=preview,
            message_count=summary.message_count,
            last_message=last_message,
        )


def merge_remote_summary(session: Session, summary: RemoteSessionSummary) -> None:
    """Copy summary-level metadata from a fresh remote summary onto a cached session."""
    session.created_at = normalize_iso(summary.created_at)
    session.updated_at = normalize_iso(summary.updated_at)
    if summary.company_id is not None:
        session.company_id = summary.company_id
    if summary.company_name is not None:
        session.company_name = summary.company_name
    if summary.first_user_message is not None:
        session.first_user_message = summary.first_user_message
