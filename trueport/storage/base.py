"""
Persistence contracts for TruePort.

Workflows only ever talk to these interfaces. The local backend keeps
everything in process memory; a database-backed one can replace it
without the approval engine noticing.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncContextManager

from pydantic import BaseModel


# =============================================================================
# Collections
# =============================================================================


class Collections:
    """Names of the record collections the workflows write to."""

    USERS = "users"
    CLAIMS = "claims"
    VERIFICATION_REQUESTS = "verification_requests"
    ASSOCIATION_REQUESTS = "association_requests"
    AUDIT = "audit"


# =============================================================================
# Records
# =============================================================================


class Transaction(ABC):
    """
    Unit of work handed out by MetadataStorage.transaction().

    Reads see committed records overlaid with this unit's own pending
    writes. Other readers see none of it until the block exits cleanly.
    """

    @abstractmethod
    async def get(self, collection: str, id: str) -> dict[str, Any] | None:
        pass

    @abstractmethod
    async def save(self, collection: str, id: str, data: dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def update(self, collection: str, id: str, updates: dict[str, Any]) -> bool:
        pass


class MetadataStorage(ABC):
    """Record store for users, claims and the two request types."""

    @abstractmethod
    async def save(self, collection: str, id: str, data: dict[str, Any]) -> None:
        """Insert or replace the record under `id`."""

    @abstractmethod
    async def get(self, collection: str, id: str) -> dict[str, Any] | None:
        pass

    @abstractmethod
    async def delete(self, collection: str, id: str) -> bool:
        pass

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Records whose fields equal every value in `filters`."""

    @abstractmethod
    async def update(self, collection: str, id: str, updates: dict[str, Any]) -> bool:
        """Merge `updates` into an existing record. False if it is missing."""

    @abstractmethod
    def transaction(self) -> AsyncContextManager[Transaction]:
        """
        Serialized unit of work.

        Transactions never overlap, so checking a request's status and
        writing the new one inside a single block cannot interleave with
        another resolver. Raising inside the block drops every write.
        """


# =============================================================================
# Short-lived keys
# =============================================================================


class CacheStorage(ABC):
    """
    Expiring keys: revoked session ids, consumed authorization codes and
    pending OAuth state values.
    """

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        pass

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Claim `key` if nobody holds it. False means it was already taken."""


class StorageProvider(BaseModel):
    """The pair of backends built at startup and passed to every service."""

    model_config = {"arbitrary_types_allowed": True}

    metadata: MetadataStorage
    cache: CacheStorage
