"""In-memory resource cache fed by informers.

Holds the latest observed object per (kind, namespace, name) and a reverse
index from class reference to the dependents that carry it, so dependency
lookups cost O(dependents) instead of a scan over every cached object.

Readiness model:
    WARMING          -- no registered kind has completed its initial list.
    PARTIALLY_READY  -- some, but not all, registered kinds are synced.
    READY            -- every registered kind is synced.
    DEGRADED         -- more than 3 consecutive watch reconnect failures.

The cache is written only from informer tasks and read by reconcile workers
on the same event loop; no lock is needed.
"""

from __future__ import annotations

import copy
from collections import defaultdict
from enum import StrEnum
from typing import Any

import structlog

from classguard.models.resources import ClassReference, Dependent, DependentKind, class_reference_of
from classguard.store.errors import CacheUnavailableError

_log = structlog.get_logger(component="cache.resource_cache")

_RECONNECT_FAILURE_THRESHOLD = 3

_DEPENDENT_KINDS = {str(kind) for kind in DependentKind}

# (dependent kind, namespace, class kind, class name)
_RefKey = tuple[str, str, str, str]


class CacheReadiness(StrEnum):
    """Readiness state of the resource cache."""

    WARMING = "warming"
    PARTIALLY_READY = "partially_ready"
    READY = "ready"
    DEGRADED = "degraded"


class ResourceCache:
    """Latest-state store plus class-reference index."""

    def __init__(self) -> None:
        # kind -> namespace -> name -> raw object
        self._store: dict[str, dict[str, dict[str, dict[str, Any]]]] = defaultdict(lambda: defaultdict(dict))
        self._refs: dict[_RefKey, set[str]] = defaultdict(set)
        self._all_kinds: set[str] = set()
        self._ready_kinds: set[str] = set()
        self._reconnect_failures = 0
        self._readiness = CacheReadiness.WARMING

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def register_kind(self, kind: str) -> None:
        self._all_kinds.add(kind)
        self._recompute_readiness()

    def mark_synced(self, kind: str) -> None:
        self._all_kinds.add(kind)
        self._ready_kinds.add(kind)
        self._recompute_readiness()

    def readiness(self) -> CacheReadiness:
        return self._readiness

    def is_synced(self, kind: str) -> bool:
        return kind in self._ready_kinds

    def require_synced(self, *kinds: str) -> None:
        """Raise CacheUnavailableError unless every *kind* is synced and the cache is healthy."""
        if self._readiness == CacheReadiness.DEGRADED:
            raise CacheUnavailableError("resource cache is degraded")
        missing = sorted(k for k in kinds if k not in self._ready_kinds)
        if missing:
            raise CacheUnavailableError(f"resource cache not synced for {', '.join(missing)}")

    def notify_reconnect_failure(self) -> None:
        self._reconnect_failures += 1
        self._recompute_readiness()

    def reset_reconnect_failures(self) -> None:
        self._reconnect_failures = 0
        self._recompute_readiness()

    def _recompute_readiness(self) -> None:
        previous = self._readiness
        if self._reconnect_failures > _RECONNECT_FAILURE_THRESHOLD:
            state = CacheReadiness.DEGRADED
        elif not self._all_kinds or not self._ready_kinds:
            state = CacheReadiness.WARMING
        elif self._ready_kinds >= self._all_kinds:
            state = CacheReadiness.READY
        else:
            state = CacheReadiness.PARTIALLY_READY
        self._readiness = state
        if state != previous:
            _log.info("cache_readiness_changed", previous=previous.value, current=state.value)

    # ------------------------------------------------------------------
    # Writes (informer path)
    # ------------------------------------------------------------------

    def update(self, kind: str, namespace: str, name: str, raw: dict[str, Any]) -> dict[str, Any] | None:
        """Store *raw* and return the object it replaced, if any."""
        old = self._store[kind][namespace].get(name)
        self._store[kind][namespace][name] = raw
        if kind in _DEPENDENT_KINDS:
            self._unindex(kind, namespace, name, old)
            self._index(kind, namespace, name, raw)
        return old

    def remove(self, kind: str, namespace: str, name: str) -> dict[str, Any] | None:
        """Drop an object and return its last cached state, if any."""
        old = self._store[kind][namespace].pop(name, None)
        if kind in _DEPENDENT_KINDS:
            self._unindex(kind, namespace, name, old)
        return old

    def replace(self, kind: str, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Swap in a full relist of *kind* and return the objects that vanished."""
        fresh: set[tuple[str, str]] = set()
        for raw in items:
            metadata = raw.get("metadata") or {}
            name = metadata.get("name")
            if not name:
                continue
            namespace = str(metadata.get("namespace") or "")
            fresh.add((namespace, name))
            self.update(kind, namespace, name, raw)

        vanished: list[dict[str, Any]] = []
        for namespace, by_name in list(self._store[kind].items()):
            for name in list(by_name):
                if (namespace, name) not in fresh:
                    old = self.remove(kind, namespace, name)
                    if old is not None:
                        vanished.append(old)
        self.mark_synced(kind)
        return vanished

    def _index(self, kind: str, namespace: str, name: str, raw: dict[str, Any] | None) -> None:
        ref = self._ref(kind, raw)
        if ref is not None:
            self._refs[(kind, namespace, ref.kind, ref.name)].add(name)

    def _unindex(self, kind: str, namespace: str, name: str, raw: dict[str, Any] | None) -> None:
        ref = self._ref(kind, raw)
        if ref is None:
            return
        key = (kind, namespace, ref.kind, ref.name)
        names = self._refs.get(key)
        if names is None:
            return
        names.discard(name)
        if not names:
            del self._refs[key]

    @staticmethod
    def _ref(kind: str, raw: dict[str, Any] | None) -> ClassReference | None:
        if raw is None:
            return None
        return class_reference_of(DependentKind(kind), raw)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, kind: str, namespace: str, name: str) -> dict[str, Any] | None:
        """Return a copy of the cached object, or None when absent."""
        raw = self._store.get(kind, {}).get(namespace, {}).get(name)
        if raw is None:
            return None
        return copy.deepcopy(raw)

    def list(self, kind: str, namespace: str = "") -> list[dict[str, Any]]:
        by_ns = self._store.get(kind, {})
        namespaces = [namespace] if namespace else sorted(by_ns)
        items: list[dict[str, Any]] = []
        for ns in namespaces:
            for name in sorted(by_ns.get(ns, {})):
                items.append(copy.deepcopy(by_ns[ns][name]))
        return items

    def count(self, kind: str) -> int:
        return sum(len(by_name) for by_name in self._store.get(kind, {}).values())

    def referencing(
        self,
        kind: DependentKind,
        namespace: str,
        class_kind: str,
        class_name: str,
    ) -> list[Dependent]:
        """Return the cached dependents of *kind* whose class reference matches, sorted by name."""
        names = self._refs.get((str(kind), namespace, class_kind, class_name), set())
        return [
            Dependent(kind=kind, namespace=namespace, name=name, class_ref=ClassReference(class_kind, class_name))
            for name in sorted(names)
        ]
