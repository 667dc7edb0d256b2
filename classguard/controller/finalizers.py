"""Finalizer manager: add or remove the controller's token on a class.

Both operations refetch the class from the store and compute the target
finalizer list against that fresh copy, so a stale caller copy can never
reintroduce or drop someone else's finalizer.  Writes are conditional on
the refetched resourceVersion.

Outcomes:
    True                  -- a write changed the finalizers.
    False                 -- already in the target state, the object is gone,
                             or an add was asked for an object being deleted.
    FinalizerUpdateError  -- every attempt hit a write conflict.
    StoreError            -- any other store failure, raised on first sight.
"""

from __future__ import annotations

import asyncio
import copy
from enum import StrEnum

import structlog

from classguard.models.config import FinalizerConfig
from classguard.models.resources import MachineClass, finalizers_of
from classguard.observability.metrics import finalizer_conflicts_total, finalizer_updates_total
from classguard.store.base import ResourceStore
from classguard.store.errors import ConflictError, NotFoundError, StoreError

_log = structlog.get_logger(component="controller.finalizers")


class FinalizerAction(StrEnum):
    ADD = "add"
    REMOVE = "remove"


class FinalizerUpdateError(StoreError):
    """Raised when a finalizer update keeps conflicting after every allowed attempt."""

    def __init__(self, action: FinalizerAction, kind: str, namespace: str, name: str, attempts: int) -> None:
        super().__init__(
            f"{action} finalizer on {kind} {namespace}/{name}: conflict after {attempts} attempts",
            kind,
            namespace,
            name,
        )
        self.action = action
        self.attempts = attempts


class FinalizerManager:
    """Owns exactly one finalizer token and never touches any other."""

    def __init__(self, store: ResourceStore, token: str, policy: FinalizerConfig | None = None) -> None:
        self._store = store
        self._token = token
        self._policy = policy or FinalizerConfig()

    @property
    def token(self) -> str:
        return self._token

    async def add(self, obj: MachineClass) -> bool:
        return await self._apply(FinalizerAction.ADD, obj)

    async def remove(self, obj: MachineClass) -> bool:
        return await self._apply(FinalizerAction.REMOVE, obj)

    async def _apply(self, action: FinalizerAction, obj: MachineClass) -> bool:
        kind, namespace, name = obj.kind, obj.namespace, obj.name
        attempts = max(1, self._policy.max_attempts)
        delay = self._policy.initial_backoff

        for attempt in range(1, attempts + 1):
            try:
                fresh = await self._store.get(kind, namespace, name)
            except NotFoundError:
                _log.info("finalizer_target_gone", action=action.value, kind=kind, key=obj.key)
                return False

            current = finalizers_of(fresh)
            if action == FinalizerAction.ADD:
                if self._token in current:
                    return False
                if (fresh.get("metadata") or {}).get("deletionTimestamp"):
                    # the API server rejects new finalizers once deletion started
                    _log.info("finalizer_add_skipped_deleting", kind=kind, key=obj.key)
                    return False
                desired = [*current, self._token]
            else:
                if self._token not in current:
                    return False
                desired = [f for f in current if f != self._token]

            updated = copy.deepcopy(fresh)
            updated.setdefault("metadata", {})["finalizers"] = desired
            try:
                await self._store.update(kind, updated)
            except NotFoundError:
                _log.info("finalizer_target_gone", action=action.value, kind=kind, key=obj.key)
                return False
            except ConflictError:
                finalizer_conflicts_total.labels(action=action.value).inc()
                _log.warning(
                    "finalizer_update_conflict",
                    action=action.value,
                    kind=kind,
                    key=obj.key,
                    attempt=attempt,
                    max_attempts=attempts,
                )
                if attempt < attempts:
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, self._policy.max_backoff)
                continue

            finalizer_updates_total.labels(action=action.value).inc()
            _log.info("finalizer_updated", action=action.value, kind=kind, key=obj.key, finalizer=self._token)
            return True

        raise FinalizerUpdateError(action, kind, namespace, name, attempts)
