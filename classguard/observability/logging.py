"""Structured logging configuration using structlog.

Every line is one JSON object on stderr.  Controller-wide context (class kind,
namespace) is bound once at startup through contextvars; worker tasks bind
the key being reconciled so nested log calls carry it without passing it down.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

# stdlib loggers of the client and server libraries, capped at warning
_NOISY_LOGGERS = ("kubernetes_asyncio", "uvicorn", "uvicorn.error", "uvicorn.access")


def setup_logging(level: str = "info") -> None:
    """Configure structlog for JSON output to stderr."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(stream=sys.stderr, level=log_level, format="%(name)s %(levelname)s %(message)s")
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def bind_controller(class_kind: str, namespace: str) -> None:
    """Attach the watched class kind and namespace to every subsequent log line."""
    structlog.contextvars.bind_contextvars(class_kind=class_kind, namespace=namespace)


@contextmanager
def reconcile_context(queue: str, key: str) -> Iterator[None]:
    """Bind *queue* and *key* for the duration of one work item."""
    with structlog.contextvars.bound_contextvars(queue=queue, key=key):
        yield


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with a component name."""
    return structlog.get_logger(component=component)  # type: ignore[return-value]
