from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from taskflow.apps.api.deps import Services, get_actor, get_services
from taskflow.apps.api.response import success_response
from taskflow.apps.api.routes.recovery import to_summary_response
from taskflow.domain.entities import Actor
from taskflow.services.bulk_actions import BulkAction


router = APIRouter(prefix="/bulk-actions", tags=["bulk-actions"])


@router.post("")
async def execute_bulk_action(
    request: Request,
    body: BulkAction,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict:
    # Partial failure is a normal 200 response; callers read per-item results.
    summary = await services.bulk_actions.execute(body, actor)
    return success_response(request=request, data=to_summary_response(summary))
