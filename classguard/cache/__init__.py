"""Cache layer for classguard.

Provides the in-memory resource cache and the informers that keep it in
sync with the resource store's watch streams.

Submodules:
    resource_cache  -- Latest-state cache with a class-reference index and readiness model.
    informer        -- List/watch loop feeding the cache and event handlers.
"""

from classguard.cache.informer import Informer
from classguard.cache.resource_cache import CacheReadiness, ResourceCache

__all__ = ["CacheReadiness", "Informer", "ResourceCache"]
