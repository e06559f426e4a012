"""
Storage abstractions.

Integration Points:
- MetadataStorage → PostgreSQL (users, claims, requests)
- CacheStorage → Redis (revoked sessions, consumed codes, OAuth state)
"""

from trueport.storage.base import (
    CacheStorage,
    Collections,
    MetadataStorage,
    StorageProvider,
    Transaction,
)
from trueport.storage.local import create_local_storage

__all__ = [
    "CacheStorage",
    "Collections",
    "MetadataStorage",
    "StorageProvider",
    "Transaction",
    "create_local_storage",
]
