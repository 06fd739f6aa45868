"""
Device-local identifiers for request tagging.

Every pool request carries an account id and a user id. Both are random
UUIDs generated on first use and kept in device storage. The value is
available synchronously; writing it to storage happens in the background
and a failed write is only logged.

Uniqueness is best-effort: two processes launching for the first time at
the same moment can each generate an id and race on the stored value.
The ids only tag requests, nothing relies on them being unique.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from ..local.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

ACCOUNT_STORAGE_KEY = "goldenOuterGate.poolAccountId"
USER_STORAGE_KEY = "goldenOuterGate.poolUserId"


class IdentityBootstrap:
    """Produces stable device-local identifiers.

    Example:
        >>> bootstrap = IdentityBootstrap(kv_store)
        >>> account_id = bootstrap.ensure_identifier(ACCOUNT_STORAGE_KEY)
        >>> await bootstrap.flush()  # wait until it is on disk
    """

    def __init__(self, storage: KeyValueStore) -> None:
        self.storage = storage
        self._identifiers: dict[str, str] = {}
        self._pending: set[asyncio.Task[None]] = set()
        # Writes requested while no event loop was running
        self._deferred: dict[str, str] = {}

    def ensure_identifier(self, key: str) -> str:
        """Return the identifier stored under key, creating one if needed."""
        if key in self._identifiers:
            return self._identifiers[key]

        existing = self.storage.get(key)
        if isinstance(existing, str) and existing.strip():
            self._identifiers[key] = existing
            return existing

        identifier = str(uuid.uuid4())
        self._identifiers[key] = identifier
        self._schedule_write(key, identifier)
        return identifier

    def _schedule_write(self, key: str, identifier: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deferred[key] = identifier
            return

        task = loop.create_task(self._persist(key, identifier))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def schedule_deferred(self) -> None:
        """Start background writes requested before an event loop was running."""
        deferred, self._deferred = self._deferred, {}
        for key, identifier in deferred.items():
            self._schedule_write(key, identifier)

    async def _persist(self, key: str, identifier: str) -> None:
        try:
            await self.storage.set(key, identifier)
        except Exception as e:
            logger.warning(f"Failed to persist identifier for {key}: {e}")

    async def flush(self) -> None:
        """Wait for all background identifier writes to finish."""
        deferred, self._deferred = self._deferred, {}
        for key, identifier in deferred.items():
            await self._persist(key, identifier)
        if self._pending:
            await asyncio.gather(*list(self._pending))
