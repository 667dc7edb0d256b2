"""Typed views over the raw resource dicts held by the store and cache.

The store and cache traffic in Kubernetes-shaped JSON dicts.  These views
give the controller a uniform, read-only shape for classes and for every
dependent kind without switching on concrete object types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class DependentKind(StrEnum):
    """Resource kinds that may reference a class."""

    MACHINE = "Machine"
    MACHINE_SET = "MachineSet"
    MACHINE_DEPLOYMENT = "MachineDeployment"


# Path from the object root to the {kind, name} class reference.
_CLASS_REF_PATHS: dict[DependentKind, tuple[str, ...]] = {
    DependentKind.MACHINE: ("spec", "class"),
    DependentKind.MACHINE_SET: ("spec", "template", "spec", "class"),
    DependentKind.MACHINE_DEPLOYMENT: ("spec", "template", "spec", "class"),
}

DEPENDENT_PLURALS: dict[DependentKind, str] = {
    DependentKind.MACHINE: "machines",
    DependentKind.MACHINE_SET: "machinesets",
    DependentKind.MACHINE_DEPLOYMENT: "machinedeployments",
}


@dataclass(frozen=True, order=True)
class ObjectKey:
    """Namespace/name identity of an object.  Empty namespace means cluster-scoped."""

    namespace: str
    name: str

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    @classmethod
    def parse(cls, key: str) -> ObjectKey:
        """Parse ``namespace/name`` or ``name``.  Raises ValueError on anything else."""
        parts = key.split("/")
        if len(parts) == 1 and parts[0]:
            return cls(namespace="", name=parts[0])
        if len(parts) == 2 and parts[1]:
            return cls(namespace=parts[0], name=parts[1])
        raise ValueError(f"unexpected key format: {key!r}")

    @classmethod
    def of(cls, raw: dict[str, Any]) -> ObjectKey:
        metadata = raw.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValueError("object metadata is not a mapping")
        name = metadata.get("name")
        if not isinstance(name, str) or not name:
            raise ValueError("object has no metadata.name")
        return cls(namespace=str(metadata.get("namespace") or ""), name=name)


def object_key(raw: dict[str, Any]) -> str:
    """Return the string queue key for a raw object."""
    return str(ObjectKey.of(raw))


def finalizers_of(raw: dict[str, Any]) -> list[str]:
    return list((raw.get("metadata") or {}).get("finalizers") or [])


def resource_version_of(raw: dict[str, Any]) -> str:
    return str((raw.get("metadata") or {}).get("resourceVersion") or "")


@dataclass(frozen=True)
class ClassReference:
    """A dependent's pointer at the class it consumes."""

    kind: str
    name: str


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass(frozen=True)
class MachineClass:
    """Read-only view of a class object."""

    kind: str
    namespace: str
    name: str
    finalizers: tuple[str, ...] = ()
    deletion_timestamp: datetime | None = None
    resource_version: str = ""
    spec: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return str(ObjectKey(self.namespace, self.name))

    @property
    def deletion_requested(self) -> bool:
        return self.deletion_timestamp is not None

    def has_finalizer(self, token: str) -> bool:
        return token in self.finalizers

    @classmethod
    def from_object(cls, raw: dict[str, Any], kind: str = "") -> MachineClass:
        metadata = raw.get("metadata") or {}
        spec = raw.get("spec")
        return cls(
            kind=str(raw.get("kind") or kind),
            namespace=str(metadata.get("namespace") or ""),
            name=str(metadata.get("name") or ""),
            finalizers=tuple(metadata.get("finalizers") or ()),
            deletion_timestamp=_parse_timestamp(metadata.get("deletionTimestamp")),
            resource_version=str(metadata.get("resourceVersion") or ""),
            spec=spec if isinstance(spec, dict) else {},
        )


@dataclass(frozen=True)
class Dependent:
    """Uniform view of any dependent kind: identity plus its class reference."""

    kind: DependentKind
    namespace: str
    name: str
    class_ref: ClassReference | None

    @property
    def key(self) -> str:
        return f"{self.kind}/{ObjectKey(self.namespace, self.name)}"

    def references(self, class_kind: str, class_name: str) -> bool:
        return (
            self.class_ref is not None
            and self.class_ref.kind == class_kind
            and self.class_ref.name == class_name
        )

    @classmethod
    def from_object(cls, kind: DependentKind | str, raw: dict[str, Any]) -> Dependent:
        """Build the view from a raw dependent.  Raises ValueError for unknown kinds or no name."""
        dep_kind = DependentKind(kind)
        key = ObjectKey.of(raw)
        return cls(
            kind=dep_kind,
            namespace=key.namespace,
            name=key.name,
            class_ref=class_reference_of(dep_kind, raw),
        )


def class_reference_of(kind: DependentKind, raw: dict[str, Any]) -> ClassReference | None:
    """Extract the class reference of a dependent, or None if absent or malformed."""
    node: Any = raw
    for part in _CLASS_REF_PATHS[kind]:
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    if not isinstance(node, dict):
        return None
    ref_kind = node.get("kind")
    ref_name = node.get("name")
    if not isinstance(ref_kind, str) or not isinstance(ref_name, str) or not ref_kind or not ref_name:
        return None
    return ClassReference(kind=ref_kind, name=ref_name)


@dataclass
class Dependents:
    """Dependents of one class, grouped by kind."""

    machines: list[Dependent] = field(default_factory=list)
    machine_sets: list[Dependent] = field(default_factory=list)
    machine_deployments: list[Dependent] = field(default_factory=list)

    def of_kind(self, kind: DependentKind) -> list[Dependent]:
        return {
            DependentKind.MACHINE: self.machines,
            DependentKind.MACHINE_SET: self.machine_sets,
            DependentKind.MACHINE_DEPLOYMENT: self.machine_deployments,
        }[kind]

    def all(self) -> list[Dependent]:
        return [*self.machine_deployments, *self.machine_sets, *self.machines]

    @property
    def total(self) -> int:
        return len(self.machines) + len(self.machine_sets) + len(self.machine_deployments)

    def __bool__(self) -> bool:
        return self.total > 0
