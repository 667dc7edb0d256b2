"""Tests for ClassReconciler: every state-machine branch plus safety properties.

The cache is refreshed from the store by hand after each external write,
standing in for the informers.
"""

from __future__ import annotations

import asyncio
import copy

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from classguard.controller.context import ControllerContext, build_context
from classguard.controller.reconciler import ClassReconciler, Outcome
from classguard.models.config import DEFAULT_FINALIZER, ClassGuardConfig
from classguard.models.resources import DependentKind
from classguard.store.errors import CacheUnavailableError, StoreError
from classguard.store.memory import InMemoryStore

_KIND = "AzureMachineClass"
_FOREIGN = "example.com/protect"

_SPEC = {
    "location": "westeurope",
    "resourceGroup": "shoot--dev--core",
    "subnetInfo": {"vnetName": "shoot-vnet", "subnetName": "shoot-nodes"},
    "secretRef": {"name": "cloudprovider", "namespace": "default"},
    "properties": {
        "hardwareProfile": {"vmSize": "Standard_D2s_v3"},
        "osProfile": {"adminUsername": "core"},
    },
}


def _class(name: str = "small", finalizers: list[str] | None = None, spec: dict | None = None) -> dict:
    return {
        "kind": _KIND,
        "metadata": {"name": name, "namespace": "default", "finalizers": list(finalizers or [])},
        "spec": copy.deepcopy(_SPEC if spec is None else spec),
    }


def _dependent(kind: DependentKind, name: str, class_name: str = "small") -> dict:
    ref = {"kind": _KIND, "name": class_name}
    spec = {"class": ref} if kind == DependentKind.MACHINE else {"template": {"spec": {"class": ref}}}
    return {"kind": str(kind), "metadata": {"name": name, "namespace": "default"}, "spec": spec}


def _make_context(store: InMemoryStore) -> ControllerContext:
    config = ClassGuardConfig()
    config.finalizers.initial_backoff = 0
    ctx = build_context(config, store)
    ctx.cache.mark_synced(_KIND)
    for kind in DependentKind:
        ctx.cache.mark_synced(str(kind))
    return ctx


async def _refresh(ctx: ControllerContext, store: InMemoryStore) -> None:
    for kind in (_KIND, *(str(k) for k in DependentKind)):
        items, _ = await store.list(kind, "")
        ctx.cache.replace(kind, items)


async def _finalizers(store: InMemoryStore, name: str = "small") -> list[str]:
    raw = await store.get(_KIND, "default", name)
    return raw["metadata"].get("finalizers", [])


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def ctx(store: InMemoryStore) -> ControllerContext:
    return _make_context(store)


@pytest.fixture
def reconciler(ctx: ControllerContext) -> ClassReconciler:
    return ClassReconciler(ctx)


# ---------------------------------------------------------------------------
# Live classes
# ---------------------------------------------------------------------------


class TestLiveClass:
    async def test_adds_finalizer(
        self, store: InMemoryStore, ctx: ControllerContext, reconciler: ClassReconciler
    ) -> None:
        await store.create(_KIND, _class())
        await _refresh(ctx, store)

        assert await reconciler.reconcile("default/small") == Outcome.SYNCED
        assert await _finalizers(store) == [DEFAULT_FINALIZER]

    async def test_second_pass_writes_nothing(
        self, store: InMemoryStore, ctx: ControllerContext, reconciler: ClassReconciler
    ) -> None:
        await store.create(_KIND, _class())
        await _refresh(ctx, store)
        await reconciler.reconcile("default/small")
        await _refresh(ctx, store)
        calls = store.update_calls

        assert await reconciler.reconcile("default/small") == Outcome.SYNCED
        assert store.update_calls == calls

    async def test_foreign_finalizer_preserved(
        self, store: InMemoryStore, ctx: ControllerContext, reconciler: ClassReconciler
    ) -> None:
        await store.create(_KIND, _class(finalizers=[_FOREIGN]))
        await _refresh(ctx, store)

        await reconciler.reconcile("default/small")
        assert await _finalizers(store) == [_FOREIGN, DEFAULT_FINALIZER]

    async def test_no_finalizer_when_cache_lags_deletion(
        self, store: InMemoryStore, ctx: ControllerContext, reconciler: ClassReconciler
    ) -> None:
        await store.create(_KIND, _class(finalizers=[_FOREIGN]))
        await _refresh(ctx, store)
        # deletion lands in the store but the cache still holds the live copy
        await store.delete(_KIND, "default", "small")

        await reconciler.reconcile("default/small")
        assert store.update_calls == 0
        assert await _finalizers(store) == [_FOREIGN]

    async def test_enqueues_dependents_for_resync(
        self, store: InMemoryStore, ctx: ControllerContext, reconciler: ClassReconciler
    ) -> None:
        await store.create(_KIND, _class())
        await store.create("Machine", _dependent(DependentKind.MACHINE, "m-1"))
        await store.create("MachineSet", _dependent(DependentKind.MACHINE_SET, "ms-1"))
        await store.create("MachineDeployment", _dependent(DependentKind.MACHINE_DEPLOYMENT, "md-1"))
        await store.create("Machine", _dependent(DependentKind.MACHINE, "m-other", class_name="large"))
        await _refresh(ctx, store)

        assert await reconciler.reconcile("default/small") == Outcome.SYNCED
        assert list(ctx.dependent_queue._queue) == [
            "MachineDeployment/default/md-1",
            "MachineSet/default/ms-1",
            "Machine/default/m-1",
        ]


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


class TestDeletion:
    async def test_blocked_while_dependents_remain(
        self, store: InMemoryStore, ctx: ControllerContext, reconciler: ClassReconciler
    ) -> None:
        await store.create(_KIND, _class(finalizers=[DEFAULT_FINALIZER]))
        await store.create("Machine", _dependent(DependentKind.MACHINE, "m-1"))
        await store.delete(_KIND, "default", "small")
        await _refresh(ctx, store)
        calls = store.update_calls

        assert await reconciler.reconcile("default/small") == Outcome.BLOCKED
        assert await _finalizers(store) == [DEFAULT_FINALIZER]
        assert store.update_calls == calls
        assert len(ctx.dependent_queue) == 0

    @pytest.mark.parametrize("kind", list(DependentKind))
    async def test_any_dependent_kind_blocks(
        self, store: InMemoryStore, ctx: ControllerContext, reconciler: ClassReconciler, kind: DependentKind
    ) -> None:
        await store.create(_KIND, _class(finalizers=[DEFAULT_FINALIZER]))
        await store.create(str(kind), _dependent(kind, "dep-1"))
        await store.delete(_KIND, "default", "small")
        await _refresh(ctx, store)

        assert await reconciler.reconcile("default/small") == Outcome.BLOCKED

    async def test_released_when_no_dependents(
        self, store: InMemoryStore, ctx: ControllerContext, reconciler: ClassReconciler
    ) -> None:
        await store.create(_KIND, _class(finalizers=[DEFAULT_FINALIZER]))
        await store.delete(_KIND, "default", "small")
        await _refresh(ctx, store)
        calls = store.update_calls

        assert await reconciler.reconcile("default/small") == Outcome.RELEASED
        assert store.update_calls == calls + 1
        assert not store.contains(_KIND, "default", "small")

    async def test_release_keeps_foreign_finalizer(
        self, store: InMemoryStore, ctx: ControllerContext, reconciler: ClassReconciler
    ) -> None:
        await store.create(_KIND, _class(finalizers=[_FOREIGN, DEFAULT_FINALIZER]))
        await store.delete(_KIND, "default", "small")
        await _refresh(ctx, store)

        assert await reconciler.reconcile("default/small") == Outcome.RELEASED
        assert await _finalizers(store) == [_FOREIGN]

    async def test_removal_happens_once(
        self, store: InMemoryStore, ctx: ControllerContext, reconciler: ClassReconciler
    ) -> None:
        await store.create(_KIND, _class(finalizers=[_FOREIGN, DEFAULT_FINALIZER]))
        await store.delete(_KIND, "default", "small")
        await _refresh(ctx, store)
        await reconciler.reconcile("default/small")
        await _refresh(ctx, store)
        calls = store.update_calls

        assert await reconciler.reconcile("default/small") == Outcome.NOT_OURS
        assert store.update_calls == calls

    async def test_deleting_class_without_token_untouched(
        self, store: InMemoryStore, ctx: ControllerContext, reconciler: ClassReconciler
    ) -> None:
        await store.create(_KIND, _class(finalizers=[_FOREIGN]))
        await store.delete(_KIND, "default", "small")
        await _refresh(ctx, store)

        assert await reconciler.reconcile("default/small") == Outcome.NOT_OURS
        assert store.update_calls == 0
        assert await _finalizers(store) == [_FOREIGN]


# ---------------------------------------------------------------------------
# Skips and failures
# ---------------------------------------------------------------------------


class TestSkipsAndFailures:
    async def test_missing_class(self, reconciler: ClassReconciler, store: InMemoryStore) -> None:
        assert await reconciler.reconcile("default/absent") == Outcome.NOT_FOUND
        assert store.update_calls == 0

    async def test_malformed_key(self, reconciler: ClassReconciler) -> None:
        assert await reconciler.reconcile("a/b/c") == Outcome.INVALID_KEY

    async def test_invalid_class_left_untouched(
        self, store: InMemoryStore, ctx: ControllerContext, reconciler: ClassReconciler
    ) -> None:
        await store.create(_KIND, _class(spec={"location": "westeurope"}))
        await _refresh(ctx, store)

        assert await reconciler.reconcile("default/small") == Outcome.INVALID
        assert store.update_calls == 0
        assert await _finalizers(store) == []

    async def test_unsynced_cache_raises(self, store: InMemoryStore) -> None:
        ctx = build_context(ClassGuardConfig(), store)
        reconciler = ClassReconciler(ctx)
        with pytest.raises(CacheUnavailableError):
            await reconciler.reconcile("default/small")

    async def test_unsynced_dependents_block_decision(self, store: InMemoryStore) -> None:
        ctx = build_context(ClassGuardConfig(), store)
        ctx.cache.register_kind("Machine")
        await store.create(_KIND, _class(finalizers=[DEFAULT_FINALIZER]))
        await store.delete(_KIND, "default", "small")
        items, _ = await store.list(_KIND, "")
        ctx.cache.replace(_KIND, items)

        with pytest.raises(CacheUnavailableError):
            await ClassReconciler(ctx).reconcile("default/small")
        assert await _finalizers(store) == [DEFAULT_FINALIZER]

    async def test_store_error_propagates(
        self, store: InMemoryStore, ctx: ControllerContext, reconciler: ClassReconciler
    ) -> None:
        await store.create(_KIND, _class())
        await _refresh(ctx, store)
        store.inject_failure("update", StoreError("apiserver unavailable"))

        with pytest.raises(StoreError):
            await reconciler.reconcile("default/small")

    async def test_custom_validator(self, store: InMemoryStore, ctx: ControllerContext) -> None:
        await store.create(_KIND, _class())
        await _refresh(ctx, store)
        reconciler = ClassReconciler(ctx, validator=lambda raw, kind: ["rejected"])

        assert await reconciler.reconcile("default/small") == Outcome.INVALID


# ---------------------------------------------------------------------------
# Property: dependents always block removal
# ---------------------------------------------------------------------------


async def _deleting_with_dependents(
    counts: dict[DependentKind, int], passes: int
) -> tuple[list[Outcome], list[str]]:
    store = InMemoryStore()
    ctx = _make_context(store)
    await store.create(_KIND, _class(finalizers=[DEFAULT_FINALIZER]))
    for kind, count in counts.items():
        for i in range(count):
            await store.create(str(kind), _dependent(kind, f"dep-{i}"))
    await store.delete(_KIND, "default", "small")
    reconciler = ClassReconciler(ctx)
    outcomes = []
    for _ in range(passes):
        await _refresh(ctx, store)
        outcomes.append(await reconciler.reconcile("default/small"))
    return outcomes, await _finalizers(store)


@settings(max_examples=30, deadline=None)
@given(
    counts=st.fixed_dictionaries({kind: st.integers(min_value=0, max_value=3) for kind in DependentKind}).filter(
        lambda c: sum(c.values()) > 0
    ),
    passes=st.integers(min_value=1, max_value=5),
)
def test_finalizer_never_removed_while_dependents_exist(counts: dict[DependentKind, int], passes: int) -> None:
    outcomes, finalizers = asyncio.run(_deleting_with_dependents(counts, passes))
    assert outcomes == [Outcome.BLOCKED] * passes
    assert DEFAULT_FINALIZER in finalizers
