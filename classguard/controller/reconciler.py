"""Class reconciler: the finalizer/deletion state machine.

Level-triggered: every call re-derives the desired state from the cached
class and the current dependency index, ignoring whatever event caused the
call.  Per key:

    missing                         -> nothing to do
    fails validation                -> left untouched, not retried
    live                            -> ensure finalizer, resync dependents
    deleting, finalizer not ours    -> nothing to do
    deleting, dependents remain     -> wait (next dependent event requeues)
    deleting, no dependents         -> remove finalizer

Store and cache failures propagate so the worker can requeue with backoff.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import StrEnum
from typing import Any

import structlog

from classguard.controller.context import ControllerContext
from classguard.controller.validation import validate_class
from classguard.models.resources import MachineClass, ObjectKey
from classguard.observability.metrics import (
    reconcile_duration_seconds,
    reconcile_total,
    validation_failures_total,
)

_log = structlog.get_logger(component="controller.reconciler")

ClassValidator = Callable[[dict[str, Any], str], list[str]]


class Outcome(StrEnum):
    """How a reconcile ended; used as the metrics label."""

    INVALID_KEY = "invalid_key"
    NOT_FOUND = "not_found"
    INVALID = "invalid"
    SYNCED = "synced"
    NOT_OURS = "not_ours"
    BLOCKED = "blocked"
    RELEASED = "released"
    ERROR = "error"


class ClassReconciler:
    """Reconciles one class key against the cache, index and store."""

    def __init__(self, context: ControllerContext, validator: ClassValidator = validate_class) -> None:
        self._ctx = context
        self._validator = validator

    async def reconcile(self, key: str) -> Outcome:
        t_start = time.monotonic()
        outcome = Outcome.ERROR
        try:
            outcome = await self._reconcile(key)
            return outcome
        finally:
            reconcile_total.labels(result=outcome.value).inc()
            reconcile_duration_seconds.observe(time.monotonic() - t_start)

    async def _reconcile(self, key: str) -> Outcome:
        ctx = self._ctx
        kind = ctx.class_kind

        try:
            object_key = ObjectKey.parse(key)
        except ValueError as exc:
            _log.error("reconcile_invalid_key", kind=kind, key=key, error=str(exc))
            return Outcome.INVALID_KEY

        ctx.cache.require_synced(kind)
        raw = ctx.cache.get(kind, object_key.namespace, object_key.name)
        if raw is None:
            _log.info("reconcile_skipped_deleted", kind=kind, key=key)
            return Outcome.NOT_FOUND

        errors = self._validator(raw, kind)
        if errors:
            validation_failures_total.labels(kind=kind).inc()
            _log.warning("class_validation_failed", kind=kind, key=key, errors=errors)
            return Outcome.INVALID

        machine_class = MachineClass.from_object(raw, kind=kind)
        token = ctx.finalizers.token

        if not machine_class.deletion_requested:
            await ctx.finalizers.add(machine_class)

        dependents = ctx.index.find_dependents(kind, machine_class.name, machine_class.namespace)

        if machine_class.deletion_requested:
            if not machine_class.has_finalizer(token):
                return Outcome.NOT_OURS
            if dependents:
                _log.debug(
                    "class_deletion_blocked",
                    kind=kind,
                    key=key,
                    machines=len(dependents.machines),
                    machine_sets=len(dependents.machine_sets),
                    machine_deployments=len(dependents.machine_deployments),
                )
                return Outcome.BLOCKED
            await ctx.finalizers.remove(machine_class)
            _log.info("class_deletion_released", kind=kind, key=key)
            return Outcome.RELEASED

        for dependent in dependents.all():
            ctx.dependent_queue.add(dependent.key)
        return Outcome.SYNCED
