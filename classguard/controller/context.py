"""Controller context: every collaborator a reconcile needs, built once."""

from __future__ import annotations

from dataclasses import dataclass

from classguard.cache.resource_cache import ResourceCache
from classguard.controller.finalizers import FinalizerManager
from classguard.controller.index import DependencyIndex
from classguard.controller.queue import WorkQueue
from classguard.models.config import ClassGuardConfig
from classguard.store.base import ResourceStore


@dataclass
class ControllerContext:
    """Explicitly wired controller state, passed to each component.

    ``class_queue`` carries class keys (``namespace/name``);
    ``dependent_queue`` carries dependent resync requests
    (``Kind/namespace/name``) for whichever dependent controllers consume them.
    """

    config: ClassGuardConfig
    store: ResourceStore
    cache: ResourceCache
    index: DependencyIndex
    finalizers: FinalizerManager
    class_queue: WorkQueue
    dependent_queue: WorkQueue

    @property
    def class_kind(self) -> str:
        return self.config.resources.class_kind

    @property
    def namespace(self) -> str:
        return self.config.controller.namespace


def build_context(
    config: ClassGuardConfig,
    store: ResourceStore,
    cache: ResourceCache | None = None,
) -> ControllerContext:
    cache = cache if cache is not None else ResourceCache()
    controller = config.controller
    return ControllerContext(
        config=config,
        store=store,
        cache=cache,
        index=DependencyIndex(cache),
        finalizers=FinalizerManager(store, controller.finalizer, config.finalizers),
        class_queue=WorkQueue(
            name="classes",
            base_delay=controller.queue_base_delay,
            max_delay=controller.queue_max_delay,
        ),
        dependent_queue=WorkQueue(
            name="dependents",
            base_delay=controller.queue_base_delay,
            max_delay=controller.queue_max_delay,
        ),
    )
