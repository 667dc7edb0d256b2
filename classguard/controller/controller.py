"""Worker pools that drain the work queues.

Each worker loops: take a key, run the handler, then either forget the
key's failure history (success), requeue it with backoff (failure within
budget) or drop it (budget exhausted).  ``done`` is always called, which is
what releases a dirtied key for redelivery.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from classguard.controller.context import ControllerContext
from classguard.controller.queue import WorkQueue
from classguard.controller.reconciler import ClassReconciler
from classguard.observability.logging import reconcile_context
from classguard.observability.metrics import queue_dropped_total, queue_retries_total

_log = structlog.get_logger(component="controller")

KeyHandler = Callable[[str], Awaitable[Any]]


class WorkerPool:
    """Runs *workers* tasks pulling from *queue* into *handler*."""

    def __init__(self, queue: WorkQueue, handler: KeyHandler, workers: int, max_retries: int) -> None:
        self._queue = queue
        self._handler = handler
        self._workers = max(1, workers)
        self._max_retries = max_retries
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def workers(self) -> int:
        return self._workers

    async def start(self) -> None:
        for i in range(self._workers):
            self._tasks.append(asyncio.create_task(self._worker(), name=f"{self._queue.name}-worker-{i}"))
        _log.info("workers_started", queue=self._queue.name, workers=self._workers)

    async def stop(self) -> None:
        """Shut the queue down and let in-flight keys finish."""
        self._queue.shut_down()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        _log.info("workers_stopped", queue=self._queue.name)

    async def _worker(self) -> None:
        while True:
            key = await self._queue.get()
            if key is None:
                return
            try:
                with reconcile_context(self._queue.name, key):
                    await self.process(key)
            finally:
                self._queue.done(key)

    async def process(self, key: str) -> None:
        try:
            await self._handler(key)
        except Exception as exc:
            self._handle_error(key, exc)
            return
        self._queue.forget(key)

    def _handle_error(self, key: str, exc: Exception) -> None:
        queue = self._queue
        if queue.num_requeues(key) < self._max_retries:
            queue_retries_total.labels(queue=queue.name).inc()
            _log.warning(
                "reconcile_failed_requeueing",
                queue=queue.name,
                key=key,
                attempt=queue.num_requeues(key) + 1,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            queue.add_rate_limited(key)
            return

        queue_dropped_total.labels(queue=queue.name).inc()
        _log.error(
            "reconcile_dropped",
            queue=queue.name,
            key=key,
            retries=queue.num_requeues(key),
            error=str(exc),
            error_type=type(exc).__name__,
        )
        queue.forget(key)


async def log_dependent_resync(key: str) -> None:
    """Default dependent handler: logs the key and nothing else."""
    _log.debug("dependent_resync", key=key)


class ClassController:
    """Class worker pool plus the dependent-resync pool, sharing one context.

    Dependent keys queued by the reconciler go to *dependent_handler*.  The
    default, log_dependent_resync, does nothing beyond logging, so the resync
    is a no-op unless a real handler is supplied.
    """

    def __init__(
        self,
        context: ControllerContext,
        reconciler: ClassReconciler | None = None,
        dependent_handler: KeyHandler = log_dependent_resync,
    ) -> None:
        self._ctx = context
        self._reconciler = reconciler or ClassReconciler(context)
        settings = context.config.controller
        self._classes = WorkerPool(
            context.class_queue,
            self._reconciler.reconcile,
            settings.workers,
            settings.max_retries,
        )
        self._dependents = WorkerPool(
            context.dependent_queue,
            dependent_handler,
            settings.workers,
            settings.max_retries,
        )

    @property
    def workers(self) -> int:
        return self._classes.workers

    async def start(self) -> None:
        await self._classes.start()
        await self._dependents.start()

    async def stop(self) -> None:
        await self._classes.stop()
        await self._dependents.stop()
