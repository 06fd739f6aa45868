"""
Clover Session Storage

Persistence client for concierge chat sessions.

Provides:
- Remote session access against the pool service (aiohttp)
- One-way failover to a device-local session cache
- Session summaries for list views, merged with remote metadata
- Insight events carried inside message references

Usage:

    >>> from clover_session_storage import JsonFileKeyValueStore, SessionStore
    >>> kv = await JsonFileKeyValueStore.open()
    >>> async with SessionStore(kv) as store:
    ...     session = await store.create_session(company_name="Wellness Retreats")
    ...     session = await store.append_messages(session.id, [message])
    ...     page = await store.list_sessions(limit=12)
    ...     if store.is_local:
    ...         print("Pool service unavailable, using offline mode")
"""

from .codec import (
    INSIGHT_REFERENCE_PREFIX,
    decode_insight_event,
    encode_insight_event_reference,
    extract_insight_event,
    message_from_wire,
    messages_to_wire,
    normalize_iso,
    normalize_messages,
)
from .config import SessionStoreConfig
from .exceptions import (
    RemotePayloadError,
    RemoteRequestError,
    SessionNotFoundError,
    SessionStorageError,
    StorageIOError,
)
from .failover import TRANSIENT_NETWORK_CODES, FailoverController, StoreMode, should_fallback
from .identity import IdentityBootstrap
from .local import JsonFileKeyValueStore, KeyValueStore, LocalSessionCache, MemoryKeyValueStore
from .logging_utils import StructuredJsonFormatter, configure_structured_logging
from .remote import RemoteSessionClient
from .store import SessionStore
from .summary import CompanyDirectory, PersistedSource, RemoteSummarySource, SummaryProjector
from .types import (
    AnalysisFilters,
    AnalysisItem,
    AnalysisResponse,
    Insight,
    InsightChange,
    InsightChangeField,
    InsightEvent,
    InsightEventType,
    InsightSourceType,
    InsightStage,
    ListSessionsResult,
    Message,
    RemoteSessionSummary,
    Session,
    SessionContext,
    SessionSummary,
    Speaker,
)

__all__ = [
    # Store
    "SessionStore",
    "SessionStoreConfig",
    "StoreMode",
    "FailoverController",
    "should_fallback",
    "TRANSIENT_NETWORK_CODES",
    # Components
    "IdentityBootstrap",
    "LocalSessionCache",
    "RemoteSessionClient",
    "SummaryProjector",
    "CompanyDirectory",
    "PersistedSource",
    "RemoteSummarySource",
    # Device storage
    "KeyValueStore",
    "MemoryKeyValueStore",
    "JsonFileKeyValueStore",
    # Codec
    "INSIGHT_REFERENCE_PREFIX",
    "normalize_iso",
    "normalize_messages",
    "encode_insight_event_reference",
    "decode_insight_event",
    "extract_insight_event",
    "messages_to_wire",
    "message_from_wire",
    # Types
    "Speaker",
    "Message",
    "Session",
    "SessionContext",
    "SessionSummary",
    "ListSessionsResult",
    "RemoteSessionSummary",
    "Insight",
    "InsightChange",
    "InsightChangeField",
    "InsightEvent",
    "InsightEventType",
    "InsightSourceType",
    "InsightStage",
    "AnalysisFilters",
    "AnalysisItem",
    "AnalysisResponse",
    # Logging
    "configure_structured_logging",
    "StructuredJsonFormatter",
    # Exceptions
    "SessionStorageError",
    "SessionNotFoundError",
    "StorageIOError",
    "RemoteRequestError",
    "RemotePayloadError",
]

__version__ = "0.1.0"
