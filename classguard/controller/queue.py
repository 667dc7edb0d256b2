"""Deduplicating asyncio work queue with per-key serialization and backoff.

Semantics (mirroring the client-go workqueue):

* ``add(key)`` is a no-op while *key* is already waiting.
* A key handed out by ``get()`` is *processing* until ``done(key)``.  Adding
  it meanwhile only marks it dirty; ``done`` then puts it back, so the
  latest request is never lost and no key is processed by two workers at
  once.
* ``add_rate_limited(key)`` re-adds after ``base_delay * 2**failures``
  (capped at ``max_delay``); ``forget(key)`` resets the failure count.
"""

from __future__ import annotations

import asyncio
from collections import deque

import structlog

from classguard.observability.metrics import queue_depth

_log = structlog.get_logger(component="controller.queue")


class WorkQueue:
    """Set-backed FIFO of string keys.

    Args:
        name:       Label used in logs and metrics.
        base_delay: First rate-limited retry delay, in seconds.
        max_delay:  Upper bound on any rate-limited retry delay.
    """

    def __init__(self, name: str = "default", base_delay: float = 0.005, max_delay: float = 1000.0) -> None:
        self._name = name
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._failures: dict[str, int] = {}
        self._delayed: set[asyncio.TimerHandle] = set()
        self._ready = asyncio.Event()
        self._shutting_down = False

    @property
    def name(self) -> str:
        return self._name

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def processing(self) -> int:
        return len(self._processing)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: str) -> None:
        """Queue *key* unless it is already waiting."""
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._publish_depth()
        self._notify()

    async def get(self) -> str | None:
        """Wait for the next key; returns None once the queue is shut down and empty."""
        while not self._queue and not self._shutting_down:
            self._ready.clear()
            await self._ready.wait()
        if not self._queue:
            return None
        key = self._queue.popleft()
        self._processing.add(key)
        self._dirty.discard(key)
        self._publish_depth()
        return key

    def done(self, key: str) -> None:
        """Mark *key* finished; requeue it if it was re-added while processing."""
        self._processing.discard(key)
        if key in self._dirty:
            self._queue.append(key)
            self._publish_depth()
            self._notify()

    def add_after(self, key: str, delay: float) -> None:
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def _fire() -> None:
            self._delayed.discard(handle)
            self.add(key)

        handle = loop.call_later(delay, _fire)
        self._delayed.add(handle)

    def add_rate_limited(self, key: str) -> None:
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self._base_delay * (2**failures), self._max_delay)
        _log.debug("requeue_with_backoff", queue=self._name, key=key, delay=delay, attempt=failures + 1)
        self.add_after(key, delay)

    def num_requeues(self, key: str) -> int:
        return self._failures.get(key, 0)

    def forget(self, key: str) -> None:
        self._failures.pop(key, None)

    def shut_down(self) -> None:
        """Stop accepting keys, cancel pending delayed adds and wake every getter."""
        self._shutting_down = True
        for handle in self._delayed:
            handle.cancel()
        self._delayed.clear()
        self._notify()

    def _notify(self) -> None:
        self._ready.set()

    def _publish_depth(self) -> None:
        queue_depth.labels(queue=self._name).set(len(self._queue))
