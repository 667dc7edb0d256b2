"""Shared fixtures for classguard integration tests.

Wires an InMemoryStore, informers, dispatcher and controller together the
same way the application does, so tests drive the system purely through
store writes and observe the results in the store.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from classguard.cache.informer import Informer
from classguard.controller.context import ControllerContext, build_context
from classguard.controller.controller import ClassController
from classguard.controller.dispatcher import EventDispatcher
from classguard.models.config import DEFAULT_FINALIZER, ClassGuardConfig
from classguard.models.resources import DependentKind
from classguard.store.memory import InMemoryStore

CLASS_KIND = "AzureMachineClass"
FINALIZER = DEFAULT_FINALIZER
FOREIGN_FINALIZER = "example.com/protect"

# ---------------------------------------------------------------------------
# Object factories
# ---------------------------------------------------------------------------

_AZURE_SPEC: dict[str, Any] = {
    "location": "westeurope",
    "resourceGroup": "shoot--dev--core",
    "subnetInfo": {"vnetName": "shoot-vnet", "subnetName": "shoot-nodes"},
    "secretRef": {"name": "cloudprovider", "namespace": "default"},
    "properties": {
        "hardwareProfile": {"vmSize": "Standard_D2s_v3"},
        "osProfile": {"adminUsername": "core"},
        "storageProfile": {"osDisk": {"diskSizeGB": 50}},
    },
}


def make_class(
    name: str = "small",
    namespace: str = "default",
    finalizers: list[str] | None = None,
    spec: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Create a valid AzureMachineClass object."""
    return {
        "apiVersion": "machine.sapcloud.io/v1alpha1",
        "kind": CLASS_KIND,
        "metadata": {"name": name, "namespace": namespace, "finalizers": list(finalizers or [])},
        "spec": copy.deepcopy(_AZURE_SPEC if spec is None else spec),
    }


def _class_ref(class_name: str) -> dict[str, str]:
    return {"kind": CLASS_KIND, "name": class_name}


def make_machine(name: str = "m-1", class_name: str = "small", namespace: str = "default") -> dict[str, Any]:
    return {
        "apiVersion": "machine.sapcloud.io/v1alpha1",
        "kind": "Machine",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"class": _class_ref(class_name)},
    }


def make_machine_set(name: str = "ms-1", class_name: str = "small", namespace: str = "default") -> dict[str, Any]:
    return {
        "apiVersion": "machine.sapcloud.io/v1alpha1",
        "kind": "MachineSet",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"replicas": 1, "template": {"spec": {"class": _class_ref(class_name)}}},
    }


def make_machine_deployment(
    name: str = "md-1", class_name: str = "small", namespace: str = "default"
) -> dict[str, Any]:
    return {
        "apiVersion": "machine.sapcloud.io/v1alpha1",
        "kind": "MachineDeployment",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"replicas": 1, "template": {"spec": {"class": _class_ref(class_name)}}},
    }


# ---------------------------------------------------------------------------
# Polling helper
# ---------------------------------------------------------------------------


async def eventually(predicate: Callable[[], Any], timeout: float = 3.0, interval: float = 0.01) -> None:
    """Poll *predicate* (sync or async) until it returns truthy or *timeout* expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return
        if loop.time() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(interval)


# ---------------------------------------------------------------------------
# Harness
# ---------------------------------------------------------------------------


class Harness:
    """Running controller stack over an InMemoryStore."""

    def __init__(self, store: InMemoryStore, config: ClassGuardConfig) -> None:
        self.store = store
        self.config = config
        self.context: ControllerContext = build_context(config, store)
        self.resynced: list[str] = []
        self.informers: list[Informer] = []
        self.controller = ClassController(self.context, dependent_handler=self._record_resync)

    async def _record_resync(self, key: str) -> None:
        self.resynced.append(key)

    def _informer(self, kind: str) -> Informer:
        watch = self.config.watch
        return Informer(
            self.store,
            self.context.cache,
            kind,
            self.context.namespace,
            reconnect_base_delay=watch.reconnect_base_delay,
            reconnect_max_delay=watch.reconnect_max_delay,
        )

    async def start(self) -> None:
        dispatcher = EventDispatcher(self.context.class_kind, self.context.class_queue)
        class_informer = self._informer(self.context.class_kind)
        class_informer.add_handler(dispatcher.on_class_event)
        self.informers.append(class_informer)
        for kind in DependentKind:
            informer = self._informer(str(kind))
            informer.add_handler(dispatcher.on_dependent_event)
            self.informers.append(informer)
        for informer in self.informers:
            await informer.start()
        await asyncio.gather(*(informer.wait_synced(timeout=2.0) for informer in self.informers))
        await self.controller.start()

    async def stop(self) -> None:
        for informer in self.informers:
            await informer.stop()
        await self.controller.stop()

    async def finalizers(self, name: str = "small", namespace: str = "default") -> list[str]:
        raw = await self.store.get(CLASS_KIND, namespace, name)
        return list(raw["metadata"].get("finalizers") or [])

    async def has_finalizer(self, name: str = "small") -> bool:
        if not self.store.contains(CLASS_KIND, "default", name):
            return False
        return FINALIZER in await self.finalizers(name)

    async def finalizers_equal(self, expected: list[str], name: str = "small") -> bool:
        if not self.store.contains(CLASS_KIND, "default", name):
            return False
        return await self.finalizers(name) == expected

    def dependents_cached(self, count: int) -> bool:
        return sum(self.context.cache.count(str(kind)) for kind in DependentKind) == count

    def idle(self) -> bool:
        ctx = self.context
        return not len(ctx.class_queue) and not ctx.class_queue.processing

    async def settle(self) -> None:
        """Wait until the class queue has drained and stayed drained briefly."""
        await eventually(self.idle)
        await asyncio.sleep(0.05)
        await eventually(self.idle)


def fast_config() -> ClassGuardConfig:
    config = ClassGuardConfig()
    config.controller.workers = 3
    config.controller.queue_base_delay = 0.001
    config.controller.queue_max_delay = 0.05
    config.finalizers.initial_backoff = 0
    config.finalizers.max_backoff = 0
    config.watch.reconnect_base_delay = 0.01
    config.watch.reconnect_max_delay = 0.05
    return config


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
async def harness(store: InMemoryStore) -> AsyncIterator[Harness]:
    h = Harness(store, fast_config())
    await h.start()
    yield h
    await h.stop()
