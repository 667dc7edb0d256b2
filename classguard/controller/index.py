"""Dependency index: which dependents still reference a class."""

from __future__ import annotations

from classguard.cache.resource_cache import ResourceCache
from classguard.models.resources import DependentKind, Dependents


class DependencyIndex:
    """Answers dependency queries from the cache's class-reference index.

    Lookups never touch the store.  When any dependent kind has not finished
    its initial list (or the cache is degraded) an answer of "no dependents"
    could be wrong, so CacheUnavailableError is raised instead.
    """

    def __init__(self, cache: ResourceCache) -> None:
        self._cache = cache

    def find_dependents(self, class_kind: str, class_name: str, namespace: str) -> Dependents:
        self._cache.require_synced(*(str(kind) for kind in DependentKind))
        result = Dependents()
        for kind in DependentKind:
            result.of_kind(kind).extend(self._cache.referencing(kind, namespace, class_kind, class_name))
        return result
