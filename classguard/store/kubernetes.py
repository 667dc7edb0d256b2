"""ResourceStore backed by the Kubernetes API via kubernetes-asyncio.

All watched kinds are namespaced custom resources of one API group, so a
single CustomObjectsApi covers classes and every dependent kind.  HTTP
status codes are mapped onto the store error taxonomy:

    404 -> NotFoundError
    409 -> ConflictError
    410 -> ResourceExpiredError
    *   -> StoreError
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import structlog
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
from kubernetes_asyncio import watch as k8s_watch  # type: ignore[import-untyped]
from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

from classguard.models.config import ResourceConfig
from classguard.models.events import EventType, WatchEvent
from classguard.models.resources import DEPENDENT_PLURALS, ObjectKey
from classguard.store.base import ResourceStore
from classguard.store.errors import ConflictError, NotFoundError, ResourceExpiredError, StoreError

_log = structlog.get_logger(component="store.kubernetes")


def _translate(exc: ApiException, kind: str, namespace: str = "", name: str = "") -> StoreError:
    message = f"{kind} {namespace}/{name}: {exc.status} {exc.reason}"
    if exc.status == 404:
        return NotFoundError(message, kind, namespace, name)
    if exc.status == 409:
        return ConflictError(message, kind, namespace, name)
    if exc.status == 410:
        return ResourceExpiredError(message, kind, namespace, name)
    return StoreError(message, kind, namespace, name)


class KubernetesStore(ResourceStore):
    """CustomObjectsApi wrapper.

    Args:
        api_client:   Configured kubernetes_asyncio ApiClient.
        resources:    Group/version and class kind/plural.
        watch_timeout: Server-side timeout for each watch request, in seconds.
    """

    def __init__(
        self,
        api_client: Any,
        resources: ResourceConfig,
        watch_timeout: int = 300,
    ) -> None:
        self._api_client = api_client
        self._api = k8s_client.CustomObjectsApi(api_client)
        self._group = resources.group
        self._version = resources.version
        self._watch_timeout = watch_timeout
        self._plurals: dict[str, str] = {str(kind): plural for kind, plural in DEPENDENT_PLURALS.items()}
        self._plurals[resources.class_kind] = resources.class_plural

    def _plural(self, kind: str) -> str:
        try:
            return self._plurals[kind]
        except KeyError:
            raise StoreError(f"no plural registered for kind {kind}", kind) from None

    async def get(self, kind: str, namespace: str, name: str) -> dict[str, Any]:
        try:
            return await self._api.get_namespaced_custom_object(
                self._group, self._version, namespace, self._plural(kind), name
            )
        except ApiException as exc:
            raise _translate(exc, kind, namespace, name) from exc

    async def update(self, kind: str, obj: dict[str, Any]) -> dict[str, Any]:
        key = ObjectKey.of(obj)
        try:
            return await self._api.replace_namespaced_custom_object(
                self._group, self._version, key.namespace, self._plural(kind), key.name, obj
            )
        except ApiException as exc:
            raise _translate(exc, kind, key.namespace, key.name) from exc

    async def list(self, kind: str, namespace: str) -> tuple[list[dict[str, Any]], str]:
        try:
            result = await self._api.list_namespaced_custom_object(
                self._group, self._version, namespace, self._plural(kind)
            )
        except ApiException as exc:
            raise _translate(exc, kind, namespace) from exc
        items = list(result.get("items") or [])
        for item in items:
            # list responses omit per-item kind
            item.setdefault("kind", kind)
        resource_version = str((result.get("metadata") or {}).get("resourceVersion") or "")
        return items, resource_version

    async def watch(self, kind: str, namespace: str, resource_version: str) -> AsyncIterator[WatchEvent]:
        watcher = k8s_watch.Watch()
        try:
            async with watcher.stream(
                self._api.list_namespaced_custom_object,
                self._group,
                self._version,
                namespace,
                self._plural(kind),
                resource_version=resource_version,
                timeout_seconds=self._watch_timeout,
            ) as stream:
                async for raw_event in stream:
                    event_type = raw_event.get("type", "")
                    obj = raw_event.get("object")
                    if event_type == "ERROR":
                        status = obj if isinstance(obj, dict) else {}
                        if status.get("code") == 410:
                            raise ResourceExpiredError(str(status.get("message", "watch expired")), kind)
                        raise StoreError(f"watch error: {status}", kind)
                    if event_type not in EventType.__members__ or not isinstance(obj, dict):
                        _log.debug("watch_event_ignored", kind=kind, type=event_type)
                        continue
                    yield WatchEvent(type=EventType(event_type), kind=kind, obj=obj)
        except ApiException as exc:
            raise _translate(exc, kind, namespace) from exc
        finally:
            watcher.stop()

    async def close(self) -> None:
        await self._api_client.close()
