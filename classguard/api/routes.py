"""HTTP routes: liveness, readiness, metrics and controller status."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from classguard.api.schemas import ErrorResponse, HealthResponse, QueueStatus, StatusResponse
from classguard.cache.resource_cache import CacheReadiness

router = APIRouter()
probes = APIRouter()


@probes.get("/healthz", response_model=HealthResponse)
async def healthz() -> HealthResponse:
    from classguard import __version__

    return HealthResponse(status="ok", version=__version__)


@probes.get("/readyz", response_model=HealthResponse, responses={503: {"model": ErrorResponse}})
async def readyz(request: Request) -> HealthResponse | JSONResponse:
    from classguard import __version__

    readiness = request.app.state.context.cache.readiness()
    if readiness != CacheReadiness.READY:
        return JSONResponse(
            status_code=503,
            content=ErrorResponse(error="NOT_READY", detail=f"cache is {readiness.value}").model_dump(),
        )
    return HealthResponse(status="ok", version=__version__)


@probes.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/status", response_model=StatusResponse)
async def status(request: Request) -> StatusResponse:
    ctx = request.app.state.context
    controller = request.app.state.controller
    return StatusResponse(
        class_kind=ctx.class_kind,
        namespace=ctx.namespace,
        finalizer=ctx.finalizers.token,
        cache_state=ctx.cache.readiness().value,
        workers=controller.workers if controller is not None else 0,
        cached_classes=ctx.cache.count(ctx.class_kind),
        queues=[
            QueueStatus(name=queue.name, depth=len(queue), processing=queue.processing)
            for queue in (ctx.class_queue, ctx.dependent_queue)
        ],
    )
