"""Resource store layer for classguard.

Submodules:
    base        -- ResourceStore ABC (get / update / list / watch).
    errors      -- Store error taxonomy.
    memory      -- InMemoryStore with API-server write semantics.
    kubernetes  -- KubernetesStore over kubernetes-asyncio CustomObjectsApi.
"""

from classguard.store.base import ResourceStore
from classguard.store.errors import (
    CacheUnavailableError,
    ConflictError,
    NotFoundError,
    ResourceExpiredError,
    StoreError,
)
from classguard.store.memory import InMemoryStore

__all__ = [
    "CacheUnavailableError",
    "ConflictError",
    "InMemoryStore",
    "NotFoundError",
    "ResourceExpiredError",
    "ResourceStore",
    "StoreError",
]
