"""Core data structures for classguard."""

from classguard.models.config import ClassGuardConfig
from classguard.models.events import DeletedFinalStateUnknown, EventType, WatchEvent
from classguard.models.resources import (
    ClassReference,
    Dependent,
    DependentKind,
    Dependents,
    MachineClass,
    ObjectKey,
)

__all__ = [
    "ClassGuardConfig",
    "ClassReference",
    "DeletedFinalStateUnknown",
    "Dependent",
    "DependentKind",
    "Dependents",
    "EventType",
    "MachineClass",
    "ObjectKey",
    "WatchEvent",
]
