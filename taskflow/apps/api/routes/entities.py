from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Request, status

from taskflow.apps.api.deps import Services, get_actor, get_services
from taskflow.apps.api.response import success_response
from taskflow.apps.api.routes.recovery import to_deleted_item
from taskflow.domain.entities import Actor, EntityReference, placement_for


router = APIRouter(prefix="/entities", tags=["entities"])


@router.delete("/{entity_type}/{entity_id}", status_code=status.HTTP_200_OK)
async def soft_delete_entity(
    request: Request,
    entity_type: Literal["task", "project", "organization", "column", "team_member"],
    entity_id: str,
    organization_id: str | None = None,
    project_id: str | None = None,
    reason: str | None = None,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict:
    # Deletes are always soft; the item stays recoverable for the fixed window.
    placement = placement_for(entity_type)
    parent_id = project_id if placement.parent_type == "project" else None
    if placement.parent_type == "organization":
        parent_id = organization_id
    ref = EntityReference(
        entity_id=entity_id,
        entity_type=entity_type,
        candidate_organization_id=organization_id,
        candidate_user_id=actor.id,
        parent_entity_id=parent_id,
        parent_entity_type=placement.parent_type if parent_id else None,
    )
    entity = await services.soft_delete.soft_delete(ref, actor, reason)
    payload = to_deleted_item(entity, services.soft_delete.now())
    return success_response(request=request, data=payload)
