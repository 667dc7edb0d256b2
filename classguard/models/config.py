"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_FINALIZER = "machine.sapcloud.io/machine-controller-manager"


@dataclass
class ResourceConfig:
    """API coordinates of the watched custom resources."""

    group: str = "machine.sapcloud.io"
    version: str = "v1alpha1"
    class_kind: str = "AzureMachineClass"
    class_plural: str = "azuremachineclasses"


@dataclass
class ControllerConfig:
    """Reconcile loop configuration."""

    namespace: str = "default"
    finalizer: str = DEFAULT_FINALIZER
    workers: int = 5
    max_retries: int = 15
    queue_base_delay: float = 0.005
    queue_max_delay: float = 1000.0
    resync_period: int = 300


@dataclass
class FinalizerConfig:
    """Bounded retry policy for finalizer updates that hit write conflicts."""

    max_attempts: int = 5
    initial_backoff: float = 0.1
    max_backoff: float = 2.0


@dataclass
class WatchConfig:
    """Informer watch/reconnect configuration."""

    timeout_seconds: int = 300
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 60.0


@dataclass
class APIConfig:
    """REST API configuration."""

    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class ClassGuardConfig:
    """Top-level classguard configuration."""

    resources: ResourceConfig = field(default_factory=ResourceConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    finalizers: FinalizerConfig = field(default_factory=FinalizerConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
