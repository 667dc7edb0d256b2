"""FastAPI application factory for classguard.

The app only reads controller state: probes for the kubelet, Prometheus
exposition, and a status snapshot under ``/api/v1``.  Handlers find the
controller through ``app.state``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from classguard.api.routes import probes, router
from classguard.api.schemas import ErrorResponse
from classguard.store.errors import CacheUnavailableError, StoreError

if TYPE_CHECKING:
    from classguard.controller.context import ControllerContext
    from classguard.controller.controller import ClassController

_log = structlog.get_logger(component="api.app")

_API_PREFIX = "/api/v1"


def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=error, detail=detail).model_dump())


def create_app(context: ControllerContext, controller: ClassController | None = None) -> FastAPI:
    """Build the HTTP app over a running controller.

    Args:
        context:    Shared controller state (cache, queues, finalizer token).
        controller: Worker pools, reported in ``/api/v1/status``; optional.
    """
    from classguard import __version__

    app = FastAPI(
        title="classguard",
        summary="Finalizer-gated machine class deletion controller",
        version=__version__,
        docs_url=f"{_API_PREFIX}/docs",
        redoc_url=None,
        openapi_url=f"{_API_PREFIX}/openapi.json",
    )
    app.state.context = context
    app.state.controller = controller

    app.include_router(probes)
    app.include_router(router, prefix=_API_PREFIX)

    @app.exception_handler(CacheUnavailableError)
    async def cache_unavailable_handler(_request: Request, exc: CacheUnavailableError) -> JSONResponse:
        return _error(503, "CACHE_UNAVAILABLE", str(exc))

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        _log.warning("store_error", path=request.url.path, kind=exc.kind, error=str(exc))
        return _error(502, "STORE_ERROR", str(exc))

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
        """Last resort: log and answer 500 without a traceback."""
        _log.error("unhandled_exception", path=request.url.path, method=request.method, error=str(exc))
        return _error(500, "INTERNAL_ERROR", "An unexpected error occurred.")

    return app
