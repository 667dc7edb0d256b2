"""Watch event data structures."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class EventType(StrEnum):
    """Kind of change delivered by a watch stream."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class DeletedFinalStateUnknown:
    """Tombstone for a deletion observed only through a relist.

    The watch missed the actual DELETED event, so ``obj`` is the last state
    the cache knew about and may be stale.
    """

    key: str
    obj: dict[str, Any]


@dataclass(frozen=True)
class WatchEvent:
    """A single change notification for one object of one kind.

    ``old`` is only populated by the informer for MODIFIED events, from the
    cache entry that the new object replaced.
    """

    type: EventType
    kind: str
    obj: dict[str, Any] | DeletedFinalStateUnknown
    old: dict[str, Any] | None = None

    @property
    def raw(self) -> dict[str, Any]:
        """The object payload, unwrapping a tombstone if present."""
        if isinstance(self.obj, DeletedFinalStateUnknown):
            return self.obj.obj
        return self.obj
