"""Prometheus metrics exported by the controller.

All collectors live on the default registry so ``/metrics`` can serve them
with ``generate_latest()``.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

reconcile_total = Counter(
    "classguard_reconcile_total",
    "Class reconciliations by outcome.",
    ["result"],
)

reconcile_duration_seconds = Histogram(
    "classguard_reconcile_duration_seconds",
    "Wall-clock duration of a single class reconcile.",
    buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0),
)

finalizer_updates_total = Counter(
    "classguard_finalizer_updates_total",
    "Finalizer writes that reached the store, by action (add/remove).",
    ["action"],
)

finalizer_conflicts_total = Counter(
    "classguard_finalizer_conflicts_total",
    "Optimistic-concurrency conflicts hit while updating finalizers.",
    ["action"],
)

validation_failures_total = Counter(
    "classguard_validation_failures_total",
    "Classes skipped because they failed schema validation.",
    ["kind"],
)

queue_depth = Gauge(
    "classguard_queue_depth",
    "Keys waiting in a work queue (excluding keys being processed).",
    ["queue"],
)

queue_retries_total = Counter(
    "classguard_queue_retries_total",
    "Keys requeued with backoff after a failed reconcile.",
    ["queue"],
)

queue_dropped_total = Counter(
    "classguard_queue_dropped_total",
    "Keys dropped after exhausting their retry budget.",
    ["queue"],
)

watch_reconnects_total = Counter(
    "classguard_watch_reconnects_total",
    "Watch stream reconnects, by resource kind.",
    ["kind"],
)
