"""Configuration loading from environment variables."""

from __future__ import annotations

import os
import re

from classguard.models.config import (
    DEFAULT_FINALIZER,
    APIConfig,
    ClassGuardConfig,
    ControllerConfig,
    FinalizerConfig,
    LogConfig,
    ResourceConfig,
    WatchConfig,
)

_DNS1123_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
_KIND = re.compile(r"^[A-Z][A-Za-z0-9]*$")
_FINALIZER = re.compile(r"^[a-z0-9.-]+/[A-Za-z0-9._-]+$")


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"CLASSGUARD_{key}", default)


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_namespace(value: str) -> str:
    if not _DNS1123_LABEL.match(value):
        raise ValueError(f"Invalid namespace: {value}")
    return value


def _validate_kind(value: str) -> str:
    if not _KIND.match(value):
        raise ValueError(f"Invalid resource kind: {value}")
    return value


def _validate_finalizer(value: str) -> str:
    if not _FINALIZER.match(value):
        raise ValueError(f"Invalid finalizer name: {value}. Expected <domain>/<name>")
    return value


def load_config() -> ClassGuardConfig:
    """Load configuration from CLASSGUARD_* environment variables."""
    class_kind = _validate_kind(_env("CLASS_KIND", "AzureMachineClass"))
    return ClassGuardConfig(
        resources=ResourceConfig(
            group=_env("API_GROUP", "machine.sapcloud.io"),
            version=_env("API_VERSION", "v1alpha1"),
            class_kind=class_kind,
            class_plural=_env("CLASS_PLURAL", f"{class_kind.lower()}es"),
        ),
        controller=ControllerConfig(
            namespace=_validate_namespace(_env("NAMESPACE", "default")),
            finalizer=_validate_finalizer(_env("FINALIZER", DEFAULT_FINALIZER)),
            workers=_env_int("WORKERS", 5, min_val=1, max_val=64),
            max_retries=_env_int("MAX_RETRIES", 15, min_val=0, max_val=100),
            queue_base_delay=_env_float("QUEUE_BASE_DELAY", 0.005, min_val=0.001),
            queue_max_delay=_env_float("QUEUE_MAX_DELAY", 1000.0, min_val=1.0),
            resync_period=_env_int("RESYNC_PERIOD", 300, min_val=0),
        ),
        finalizers=FinalizerConfig(
            max_attempts=_env_int("FINALIZER_MAX_ATTEMPTS", 5, min_val=1, max_val=20),
            initial_backoff=_env_float("FINALIZER_INITIAL_BACKOFF", 0.1, min_val=0.0),
            max_backoff=_env_float("FINALIZER_MAX_BACKOFF", 2.0, min_val=0.0),
        ),
        watch=WatchConfig(
            timeout_seconds=_env_int("WATCH_TIMEOUT", 300, min_val=30, max_val=3600),
            reconnect_base_delay=_env_float("WATCH_RECONNECT_BASE_DELAY", 1.0, min_val=0.1),
            reconnect_max_delay=_env_float("WATCH_RECONNECT_MAX_DELAY", 60.0, min_val=1.0),
        ),
        api=APIConfig(
            host=_env("API_HOST", "0.0.0.0"),
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
