"""In-memory ResourceStore with Kubernetes write semantics.

Behaves like the API server for the parts the controller relies on:

* every write bumps a global resourceVersion;
* ``update`` is rejected with ConflictError on a stale resourceVersion;
* ``delete`` only sets ``deletionTimestamp`` while finalizers remain, and the
  object is physically removed once an update empties its finalizers;
* ``watch`` replays retained history after a resourceVersion and then streams
  live events; versions older than the last compaction raise
  ResourceExpiredError.

Used by the test suite and for running the controller without a cluster.
"""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

import structlog

from classguard.models.events import EventType, WatchEvent
from classguard.models.resources import ObjectKey, finalizers_of
from classguard.store.base import ResourceStore
from classguard.store.errors import ConflictError, NotFoundError, ResourceExpiredError, StoreError

_log = structlog.get_logger(component="store.memory")

_CLOSED = object()


class InMemoryStore(ResourceStore):
    """Dict-backed store.  All methods must run on a single event loop."""

    def __init__(self) -> None:
        # kind -> (namespace, name) -> object
        self._objects: dict[str, dict[tuple[str, str], dict[str, Any]]] = defaultdict(dict)
        self._rv = 0
        self._compacted_rv = 0
        self._history: list[tuple[int, WatchEvent]] = []
        self._watchers: dict[str, list[asyncio.Queue[Any]]] = defaultdict(list)
        # operation -> queued exceptions raised by the next calls
        self._failures: dict[str, list[Exception]] = defaultdict(list)
        self.update_calls = 0

    # ------------------------------------------------------------------
    # Test hooks
    # ------------------------------------------------------------------

    def inject_failure(self, operation: str, error: Exception, count: int = 1) -> None:
        """Make the next *count* calls of *operation* ("get", "update", "list") raise *error*."""
        self._failures[operation].extend([error] * count)

    def expire_watches(self) -> None:
        """Compact history and break open watches with ResourceExpiredError."""
        self._compacted_rv = self._rv
        self._history.clear()
        for queues in self._watchers.values():
            for queue in queues:
                queue.put_nowait(ResourceExpiredError("watch expired"))

    def _maybe_fail(self, operation: str) -> None:
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    # ------------------------------------------------------------------
    # ResourceStore
    # ------------------------------------------------------------------

    async def get(self, kind: str, namespace: str, name: str) -> dict[str, Any]:
        self._maybe_fail("get")
        stored = self._objects[kind].get((namespace, name))
        if stored is None:
            raise NotFoundError(f"{kind} {namespace}/{name} not found", kind, namespace, name)
        return copy.deepcopy(stored)

    async def list(self, kind: str, namespace: str) -> tuple[list[dict[str, Any]], str]:
        self._maybe_fail("list")
        items = [
            copy.deepcopy(obj)
            for (ns, _), obj in sorted(self._objects[kind].items())
            if not namespace or ns == namespace
        ]
        return items, str(self._rv)

    async def update(self, kind: str, obj: dict[str, Any]) -> dict[str, Any]:
        self.update_calls += 1
        self._maybe_fail("update")
        key = ObjectKey.of(obj)
        stored = self._objects[kind].get((key.namespace, key.name))
        if stored is None:
            raise NotFoundError(f"{kind} {key} not found", kind, key.namespace, key.name)

        sent_rv = str(obj.get("metadata", {}).get("resourceVersion") or "")
        if sent_rv and sent_rv != stored["metadata"]["resourceVersion"]:
            raise ConflictError(
                f"{kind} {key}: resourceVersion {sent_rv} is stale",
                kind,
                key.namespace,
                key.name,
            )

        updated = copy.deepcopy(obj)
        metadata = updated.setdefault("metadata", {})
        # deletionTimestamp can only be set by delete() and never cleared
        deletion = stored["metadata"].get("deletionTimestamp")
        if deletion is not None:
            metadata["deletionTimestamp"] = deletion
        else:
            metadata.pop("deletionTimestamp", None)

        if deletion is not None and not finalizers_of(updated):
            del self._objects[kind][(key.namespace, key.name)]
            self._emit(kind, EventType.DELETED, updated)
            return copy.deepcopy(updated)

        self._objects[kind][(key.namespace, key.name)] = updated
        self._emit(kind, EventType.MODIFIED, updated)
        return copy.deepcopy(updated)

    async def watch(self, kind: str, namespace: str, resource_version: str) -> AsyncIterator[WatchEvent]:
        start = int(resource_version or 0)
        if start < self._compacted_rv:
            raise ResourceExpiredError(f"resourceVersion {start} is too old", kind)

        queue: asyncio.Queue[Any] = asyncio.Queue()
        self._watchers[kind].append(queue)
        backlog = [event for rv, event in self._history if rv > start and event.kind == kind]
        try:
            for event in backlog:
                if _in_namespace(event, namespace):
                    yield event
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                if isinstance(item, Exception):
                    raise item
                if _in_namespace(item, namespace):
                    yield item
        finally:
            self._watchers[kind].remove(queue)

    async def close(self) -> None:
        for queues in self._watchers.values():
            for queue in queues:
                queue.put_nowait(_CLOSED)

    # ------------------------------------------------------------------
    # Writes outside the controller's interface (external actors)
    # ------------------------------------------------------------------

    async def create(self, kind: str, obj: dict[str, Any]) -> dict[str, Any]:
        key = ObjectKey.of(obj)
        if (key.namespace, key.name) in self._objects[kind]:
            raise StoreError(f"{kind} {key} already exists", kind, key.namespace, key.name)
        created = copy.deepcopy(obj)
        created.setdefault("kind", kind)
        created["metadata"].pop("deletionTimestamp", None)
        self._objects[kind][(key.namespace, key.name)] = created
        self._emit(kind, EventType.ADDED, created)
        return copy.deepcopy(created)

    async def delete(self, kind: str, namespace: str, name: str) -> None:
        """Request deletion: gated by finalizers like the API server."""
        stored = self._objects[kind].get((namespace, name))
        if stored is None:
            raise NotFoundError(f"{kind} {namespace}/{name} not found", kind, namespace, name)
        if not finalizers_of(stored):
            del self._objects[kind][(namespace, name)]
            self._emit(kind, EventType.DELETED, stored)
            return
        if stored["metadata"].get("deletionTimestamp") is None:
            stored["metadata"]["deletionTimestamp"] = datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
            self._emit(kind, EventType.MODIFIED, stored)

    def contains(self, kind: str, namespace: str, name: str) -> bool:
        return (namespace, name) in self._objects[kind]

    def _emit(self, kind: str, event_type: EventType, obj: dict[str, Any]) -> None:
        self._rv += 1
        obj["metadata"]["resourceVersion"] = str(self._rv)
        event = WatchEvent(type=event_type, kind=kind, obj=copy.deepcopy(obj))
        self._history.append((self._rv, event))
        for queue in self._watchers[kind]:
            queue.put_nowait(event)
        _log.debug("store_event", kind=kind, type=event_type.value, key=str(ObjectKey.of(obj)), rv=self._rv)


def _in_namespace(event: WatchEvent, namespace: str) -> bool:
    if not namespace:
        return True
    return (event.raw.get("metadata") or {}).get("namespace", "") == namespace
