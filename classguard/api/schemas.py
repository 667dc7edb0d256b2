"""Response models for the classguard REST API."""

from __future__ import annotations

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    detail: str


class HealthResponse(BaseModel):
    status: str
    version: str


class QueueStatus(BaseModel):
    name: str
    depth: int
    processing: int


class StatusResponse(BaseModel):
    """Controller snapshot served by ``GET /api/v1/status``."""

    class_kind: str
    namespace: str
    finalizer: str
    cache_state: str
    workers: int
    cached_classes: int
    queues: list[QueueStatus]
