"""Resource store error taxonomy.

NotFoundError      -- the object does not exist (not a failure for the controller).
ConflictError      -- optimistic-concurrency check failed; refetch and retry.
ResourceExpiredError -- a watch resourceVersion is too old; relist.
CacheUnavailableError -- the local cache cannot answer yet (warming or degraded).

Everything else surfaces as a plain StoreError and is treated as transient.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for resource store failures."""

    def __init__(self, message: str, kind: str = "", namespace: str = "", name: str = "") -> None:
        super().__init__(message)
        self.kind = kind
        self.namespace = namespace
        self.name = name


class NotFoundError(StoreError):
    """Raised when the requested object does not exist."""


class ConflictError(StoreError):
    """Raised when an update carries a stale resourceVersion."""


class ResourceExpiredError(StoreError):
    """Raised when a watch is started from a resourceVersion the store no longer has."""


class CacheUnavailableError(StoreError):
    """Raised when the local cache has not synced or is degraded."""
