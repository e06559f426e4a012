"""
In-memory backends used by the local server and the test suite.

Records are deep-copied on the way in and out, so callers never share
mutable state with the store.
"""

from __future__ import annotations

import asyncio
import copy
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from trueport.storage.base import (
    CacheStorage,
    MetadataStorage,
    StorageProvider,
    Transaction,
)


def _matches(doc: dict[str, Any], filters: dict[str, Any]) -> bool:
    return all(doc.get(key) == value for key, value in filters.items())


# =============================================================================
# In-Memory Metadata Storage
# =============================================================================


class _InMemoryTransaction(Transaction):
    """Buffers writes until the owning storage commits them."""

    def __init__(self, storage: InMemoryMetadataStorage):
        self._storage = storage
        self._pending: dict[tuple[str, str], dict[str, Any]] = {}

    async def get(self, collection: str, id: str) -> dict[str, Any] | None:
        if (collection, id) in self._pending:
            return copy.deepcopy(self._pending[(collection, id)])
        return await self._storage.get(collection, id)

    async def save(self, collection: str, id: str, data: dict[str, Any]) -> None:
        self._pending[(collection, id)] = copy.deepcopy(data)

    async def update(self, collection: str, id: str, updates: dict[str, Any]) -> bool:
        current = await self.get(collection, id)
        if current is None:
            return False
        current.update(copy.deepcopy(updates))
        self._pending[(collection, id)] = current
        return True

    def commit(self) -> None:
        # No await in here: all writes land in the same loop iteration
        for (collection, id), data in self._pending.items():
            self._storage._write(collection, id, data)
        self._pending.clear()


class InMemoryMetadataStorage(MetadataStorage):
    """Collections as nested dicts. Transactions run one at a time under `_tx_lock`."""

    def __init__(self):
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._tx_lock = asyncio.Lock()

    def _write(self, collection: str, id: str, data: dict[str, Any]) -> None:
        self._data.setdefault(collection, {})[id] = {
            **data,
            "_id": id,
            "_updated_at": datetime.now(timezone.utc).isoformat(),
        }

    async def save(self, collection: str, id: str, data: dict[str, Any]) -> None:
        self._write(collection, id, copy.deepcopy(data))

    async def get(self, collection: str, id: str) -> dict[str, Any] | None:
        doc = self._data.get(collection, {}).get(id)
        return copy.deepcopy(doc) if doc is not None else None

    async def delete(self, collection: str, id: str) -> bool:
        if collection in self._data and id in self._data[collection]:
            del self._data[collection][id]
            return True
        return False

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        if collection not in self._data:
            return []

        results = list(self._data[collection].values())

        if filters:
            results = [doc for doc in results if _matches(doc, filters)]

        return copy.deepcopy(results[offset:offset + limit])

    async def update(self, collection: str, id: str, updates: dict[str, Any]) -> bool:
        current = await self.get(collection, id)
        if current is None:
            return False
        current.update(copy.deepcopy(updates))
        self._write(collection, id, current)
        return True

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        async with self._tx_lock:
            tx = _InMemoryTransaction(self)
            yield tx
            tx.commit()


# =============================================================================
# In-Memory Cache Storage
# =============================================================================


class InMemoryCacheStorage(CacheStorage):
    """Expiring keys held in a dict. Expired entries are dropped on read."""

    def __init__(self):
        self._entries: dict[str, tuple[Any, float | None]] = {}

    def _live(self, key: str) -> tuple[Any, float | None] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] is not None and time.monotonic() >= entry[1]:
            del self._entries[key]
            return None
        return entry

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        self._entries[key] = (value, time.monotonic() + ttl if ttl else None)

    async def get(self, key: str) -> Any | None:
        entry = self._live(key)
        return entry[0] if entry else None

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        # Check and set happen without an await in between
        if self._live(key) is not None:
            return False
        self._entries[key] = (value, time.monotonic() + ttl if ttl else None)
        return True


# =============================================================================
# Factory
# =============================================================================


def create_local_storage() -> StorageProvider:
    """Fresh, empty in-memory backends."""
    return StorageProvider(
        metadata=InMemoryMetadataStorage(),
        cache=InMemoryCacheStorage(),
    )
