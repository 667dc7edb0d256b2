"""Abstract resource store consumed by the controller."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from classguard.models.events import WatchEvent


class ResourceStore(ABC):
    """Async CRUD + watch over Kubernetes-shaped objects, addressed by kind.

    ``update`` is conditional: implementations must reject the write with
    ConflictError when ``metadata.resourceVersion`` no longer matches.
    """

    @abstractmethod
    async def get(self, kind: str, namespace: str, name: str) -> dict[str, Any]:
        """Return a fresh copy of the object or raise NotFoundError."""

    @abstractmethod
    async def update(self, kind: str, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace the object and return the stored result."""

    @abstractmethod
    async def list(self, kind: str, namespace: str) -> tuple[list[dict[str, Any]], str]:
        """Return every object of *kind* in *namespace* and the list resourceVersion."""

    @abstractmethod
    def watch(self, kind: str, namespace: str, resource_version: str) -> AsyncIterator[WatchEvent]:
        """Stream changes after *resource_version*.

        Raises ResourceExpiredError (possibly mid-stream) when the version is
        too old to resume from.
        """

    async def close(self) -> None:  # noqa: B027
        """Release client resources.  No-op by default."""
