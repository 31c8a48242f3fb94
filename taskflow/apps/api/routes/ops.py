from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from taskflow.apps.api.deps import Services, get_actor, get_services
from taskflow.apps.api.response import SuccessEnvelope, success_response
from taskflow.domain.entities import Actor
from taskflow.persistence.db import pool_stats
from taskflow.services.telemetry import backend_latency, counters_snapshot


router = APIRouter(prefix="/ops", tags=["ops"])


@router.get("/metrics", response_model=SuccessEnvelope[dict[str, Any]])
async def ops_metrics(
    request: Request,
    window_s: int = Query(default=300, ge=1, le=86400),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict:
    # JSON metrics for dashboards; counters are process-local and reset on restart.
    bind = services.session_factory.kw.get("bind")
    payload = {
        "window_s": window_s,
        "counters": counters_snapshot(),
        "backend_latency": backend_latency(window_s),
        "connection_cache": services.cache.stats(),
        "control_plane_pool": pool_stats(bind) if bind is not None else {},
    }
    return success_response(request=request, data=payload)
