"""FastAPI route handlers for the health/metrics endpoint.

- ``GET /healthz``: liveness; 503 when the watch loop or the elector died
- ``GET /readyz``: 200 only on the leader with a synced cache, 503 otherwise
- ``GET /metrics``: Prometheus text exposition
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from hahaha.api.schemas import HealthStatus, ReadinessStatus
from hahaha.observability.logging import get_logger

_log = get_logger("api.routes")

router = APIRouter()


@router.get(
    "/healthz",
    response_model=HealthStatus,
    summary="Liveness probe",
    responses={503: {"model": HealthStatus}},
)
async def get_healthz(request: Request) -> Response:
    from hahaha import __version__

    manager = request.app.state.manager
    alive = manager.liveness()
    body = HealthStatus(status="ok" if alive else "unhealthy", version=__version__)
    if not alive:
        _log.warning("liveness_check_failed")
    return JSONResponse(status_code=200 if alive else 503, content=body.model_dump())


@router.get(
    "/readyz",
    response_model=ReadinessStatus,
    summary="Readiness probe",
    responses={503: {"model": ReadinessStatus}},
)
async def get_readyz(request: Request) -> Response:
    status = request.app.state.manager.status()
    body = ReadinessStatus(
        ready=status.ready,
        leader=status.leader,
        cache_synced=status.cache_synced,
        cache_state=status.cache_readiness,
        cached_resources=status.cached_resources,
        queue_depth=status.queue_depth,
        in_flight=status.in_flight,
        identity=status.identity,
    )
    return JSONResponse(status_code=200 if status.ready else 503, content=body.model_dump())


@router.get("/metrics", summary="Prometheus metrics", include_in_schema=False)
async def get_metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
