"""
Device-local key/value persistence.

The session store treats device storage as a dumb blob store: it knows
nothing about sessions or messages, it only keeps JSON values by key and
keeps them across process restarts. Reads are synchronous (values are
held in memory), writes are asynchronous.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..exceptions import StorageIOError

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Abstract device key/value store."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return a copy of the value stored under key, or default."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value. Setting None removes the key."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""
        ...

    @abstractmethod
    def keys(self) -> list[str]:
        ...


class MemoryKeyValueStore(KeyValueStore):
    """In-process store, mostly for tests and ephemeral hosts."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        if value is None:
            self._data.pop(key, None)
            return
        # Round-trip through JSON so stored values behave like a real blob store
        self._data[key] = json.loads(json.dumps(value))

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileKeyValueStore(KeyValueStore):
    """Key/value store persisted to a single JSON file.

    The whole file is rewritten on every change, through a temp file that
    replaces the original so a crash never leaves a half-written file.
    Writes are serialized; each one writes the state current at the time
    it acquires the lock.

    Example:
        >>> store = await JsonFileKeyValueStore.open(Path("~/.clover/state.json"))
        >>> await store.set("goldenOuterGate.poolUserId", "u-1")
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()
        self._data: dict[str, Any] = {}
        self._write_lock = asyncio.Lock()

    @classmethod
    def default_path(cls) -> Path:
        return Path.home() / ".clover" / "global-state.json"

    @classmethod
    async def open(cls, path: Path | None = None) -> JsonFileKeyValueStore:
        """Create a store and load any existing file."""
        store = cls(path or cls.default_path())
        await store.load()
        return store

    async def load(self) -> None:
        """Load the file. A missing or unreadable file starts empty."""
        if not await aiofiles.os.path.exists(self.path):
            self._data = {}
            return

        try:
            async with aiofiles.open(self.path, encoding="utf-8") as f:
                content = await f.read()
            parsed = json.loads(content) if content.strip() else {}
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load device state from {self.path}: {e}. Starting empty.")
            self._data = {}
            return

        if not isinstance(parsed, dict):
            logger.warning(f"Device state in {self.path} is not an object. Starting empty.")
            parsed = {}
        self._data = parsed

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        if value is None:
            await self.delete(key)
            return
        self._data[key] = json.loads(json.dumps(value))
        await self._write()

    async def delete(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            await self._write()

    def keys(self) -> list[str]:
        return list(self._data)

    async def _write(self) -> None:
        async with self._write_lock:
            content = json.dumps(self._data, indent=2)
            temp_path = self.path.with_name(f"{self.path.name}.{uuid.uuid4().hex}.tmp")
            try:
                await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
                async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                    await f.write(content)
                await aiofiles.os.replace(temp_path, self.path)
            except OSError as e:
                if await aiofiles.os.path.exists(temp_path):
                    await aiofiles.os.remove(temp_path)
                raise StorageIOError("write", str(self.path), e) from e
