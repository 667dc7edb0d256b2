"""List/watch loop that keeps the ResourceCache current for one kind.

Lifecycle of an Informer:
    1. list the kind and swap the result into the cache (relist);
    2. watch from the list's resourceVersion, updating the cache before any
       handler sees the event;
    3. on ResourceExpiredError relist immediately; on any other failure
       back off exponentially (capped) and relist.

Objects that disappear between two lists are reported to handlers as
DELETED events carrying a DeletedFinalStateUnknown tombstone.  An optional
resync re-emits every cached object as MODIFIED on a fixed period.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import structlog

from classguard.cache.resource_cache import ResourceCache
from classguard.models.events import DeletedFinalStateUnknown, EventType, WatchEvent
from classguard.models.resources import ObjectKey, object_key, resource_version_of
from classguard.observability.metrics import watch_reconnects_total
from classguard.store.base import ResourceStore
from classguard.store.errors import ResourceExpiredError

_log = structlog.get_logger(component="cache.informer")

EventHandler = Callable[[WatchEvent], None]


class Informer:
    """Feeds one resource kind from a ResourceStore into a ResourceCache."""

    def __init__(
        self,
        store: ResourceStore,
        cache: ResourceCache,
        kind: str,
        namespace: str,
        *,
        resync_period: float = 0,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 60.0,
    ) -> None:
        self._store = store
        self._cache = cache
        self._kind = kind
        self._namespace = namespace
        self._resync_period = resync_period
        self._base_delay = reconnect_base_delay
        self._max_delay = reconnect_max_delay
        self._handlers: list[EventHandler] = []
        self._tasks: list[asyncio.Task[None]] = []
        self._synced = asyncio.Event()

    @property
    def kind(self) -> str:
        return self._kind

    def add_handler(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    async def start(self) -> None:
        self._cache.register_kind(self._kind)
        self._tasks.append(asyncio.create_task(self._run(), name=f"informer-{self._kind}"))
        if self._resync_period > 0:
            self._tasks.append(asyncio.create_task(self._resync_loop(), name=f"resync-{self._kind}"))

    async def wait_synced(self, timeout: float | None = None) -> None:
        """Block until the first list has been applied to the cache."""
        await asyncio.wait_for(self._synced.wait(), timeout=timeout)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    # ------------------------------------------------------------------
    # Watch loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        delay = self._base_delay
        resource_version = ""
        while True:
            try:
                if not resource_version:
                    resource_version = await self._relist()
                async for event in self._store.watch(self._kind, self._namespace, resource_version):
                    resource_version = resource_version_of(event.raw) or resource_version
                    self._apply(event)
                    delay = self._base_delay
            except ResourceExpiredError:
                _log.info("watch_expired_relisting", kind=self._kind)
                resource_version = ""
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._cache.notify_reconnect_failure()
                watch_reconnects_total.labels(kind=self._kind).inc()
                _log.warning(
                    "watch_failed_reconnecting",
                    kind=self._kind,
                    error=str(exc),
                    retry_in=delay,
                )
                resource_version = ""
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._max_delay)

    async def _relist(self) -> str:
        previous = {object_key(raw): raw for raw in self._cache.list(self._kind, self._namespace)}
        items, resource_version = await self._store.list(self._kind, self._namespace)
        vanished = self._cache.replace(self._kind, items)
        self._cache.reset_reconnect_failures()
        self._synced.set()
        _log.info("relist_complete", kind=self._kind, count=len(items), resource_version=resource_version)

        for raw in items:
            try:
                key = object_key(raw)
            except ValueError:
                continue
            old = previous.get(key)
            if old is None:
                self._dispatch(WatchEvent(type=EventType.ADDED, kind=self._kind, obj=raw))
            elif resource_version_of(old) != resource_version_of(raw):
                self._dispatch(WatchEvent(type=EventType.MODIFIED, kind=self._kind, obj=raw, old=old))
        for raw in vanished:
            tombstone = DeletedFinalStateUnknown(key=object_key(raw), obj=raw)
            self._dispatch(WatchEvent(type=EventType.DELETED, kind=self._kind, obj=tombstone))
        return resource_version

    def _apply(self, event: WatchEvent) -> None:
        try:
            key = ObjectKey.of(event.raw)
        except ValueError:
            _log.debug("watch_event_without_name", kind=self._kind, type=event.type.value)
            return
        old: dict[str, Any] | None
        if event.type == EventType.DELETED:
            self._cache.remove(self._kind, key.namespace, key.name)
            old = None
        else:
            old = self._cache.update(self._kind, key.namespace, key.name, event.raw)
        if event.type == EventType.MODIFIED and old is not None:
            event = WatchEvent(type=event.type, kind=event.kind, obj=event.obj, old=old)
        self._dispatch(event)

    def _dispatch(self, event: WatchEvent) -> None:
        for handler in self._handlers:
            try:
                handler(event)
            except Exception as exc:
                _log.error("event_handler_failed", kind=self._kind, type=event.type.value, error=str(exc))

    async def _resync_loop(self) -> None:
        await self._synced.wait()
        while True:
            await asyncio.sleep(self._resync_period)
            objects = self._cache.list(self._kind, self._namespace)
            _log.debug("resync", kind=self._kind, count=len(objects))
            for raw in objects:
                self._dispatch(WatchEvent(type=EventType.MODIFIED, kind=self._kind, obj=raw, old=raw))
