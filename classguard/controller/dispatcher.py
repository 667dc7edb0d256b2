"""Translate watch notifications into class reconcile requests.

Class events enqueue the class itself.  Dependent events enqueue the class
the dependent points at, never the dependent.  Anything malformed or
referencing another class kind is dropped quietly: the dispatcher's only side
effect is queue growth.
"""

from __future__ import annotations

import structlog

from classguard.controller.queue import WorkQueue
from classguard.models.events import DeletedFinalStateUnknown, WatchEvent
from classguard.models.resources import Dependent, DependentKind, ObjectKey

_log = structlog.get_logger(component="controller.dispatcher")


class EventDispatcher:
    """Event handlers registered on the class informer and each dependent informer."""

    def __init__(self, class_kind: str, queue: WorkQueue) -> None:
        self._class_kind = class_kind
        self._queue = queue

    def on_class_event(self, event: WatchEvent) -> None:
        if isinstance(event.obj, DeletedFinalStateUnknown):
            self._queue.add(event.obj.key)
            return
        if event.kind != self._class_kind:
            _log.debug("class_event_kind_mismatch", expected=self._class_kind, kind=event.kind)
            return
        try:
            if not isinstance(event.obj, dict):
                raise ValueError("payload is not an object")
            key = ObjectKey.of(event.obj)
        except ValueError:
            _log.debug("class_event_malformed", kind=event.kind, type=event.type.value)
            return
        self._queue.add(str(key))

    def on_dependent_event(self, event: WatchEvent) -> None:
        """Enqueue the class referenced by the dependent (and by its previous version on update)."""
        for raw in (event.raw, event.old):
            if raw is None:
                continue
            key = self._referenced_class_key(event.kind, raw)
            if key is not None:
                self._queue.add(key)

    def _referenced_class_key(self, kind: str, raw: object) -> str | None:
        if not isinstance(raw, dict):
            return None
        try:
            dependent = Dependent.from_object(DependentKind(kind), raw)
        except ValueError:
            _log.debug("dependent_event_malformed", kind=kind)
            return None
        ref = dependent.class_ref
        if ref is None or ref.kind != self._class_kind:
            return None
        return str(ObjectKey(dependent.namespace, ref.name))
