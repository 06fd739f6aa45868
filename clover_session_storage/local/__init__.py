"""
Device-local storage for concierge sessions.

Provides the key/value persistence primitive and the session cache that
backs local (fallback) mode.
"""

from .cache import ACTIVE_SESSION_STORAGE_KEY, LOCAL_SESSIONS_STORAGE_KEY, LocalSessionCache
from .kv_store import JsonFileKeyValueStore, KeyValueStore, MemoryKeyValueStore

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "LocalSessionCache",
    "ACTIVE_SESSION_STORAGE_KEY",
    "LOCAL_SESSIONS_STORAGE_KEY",
]
