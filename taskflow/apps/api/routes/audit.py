from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.apps.api.deps import get_actor, get_db
from taskflow.apps.api.response import success_response
from taskflow.domain.entities import Actor
from taskflow.domain.models import AuditEvent
from taskflow.persistence.repos import audit as audit_repo


router = APIRouter(prefix="/audit", tags=["audit"])


class AuditEventResponse(BaseModel):
    id: int
    occurred_at: str
    tenant_key: str | None
    actor_type: str
    actor_id: str | None
    event_type: str
    outcome: str
    resource_type: str | None
    resource_id: str | None
    request_id: str | None
    metadata_json: dict[str, Any] | None
    error_code: str | None


class AuditEventsPage(BaseModel):
    items: list[AuditEventResponse]
    next_offset: int | None


def _to_response(event: AuditEvent) -> AuditEventResponse:
    return AuditEventResponse(
        id=event.id,
        occurred_at=event.occurred_at.isoformat(),
        tenant_key=event.tenant_key,
        actor_type=event.actor_type,
        actor_id=event.actor_id,
        event_type=event.event_type,
        outcome=event.outcome,
        resource_type=event.resource_type,
        resource_id=event.resource_id,
        request_id=event.request_id,
        metadata_json=event.metadata_json,
        error_code=event.error_code,
    )


@router.get("/events")
async def list_audit_events(
    request: Request,
    tenant_key: str | None = None,
    event_type: str | None = None,
    outcome: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    occurred_from: datetime | None = Query(default=None, alias="from"),
    occurred_to: datetime | None = Query(default=None, alias="to"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        events = await audit_repo.list_events(
            db,
            tenant_key=tenant_key,
            event_type=event_type,
            outcome=outcome,
            resource_type=resource_type,
            resource_id=resource_id,
            occurred_from=occurred_from,
            occurred_to=occurred_to,
            offset=offset,
            limit=limit + 1,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching audit events") from exc

    next_offset = None
    if len(events) > limit:
        events = events[:limit]
        next_offset = offset + limit
    page = AuditEventsPage(items=[_to_response(event) for event in events], next_offset=next_offset)
    return success_response(request=request, data=page)


@router.get("/events/{event_id}")
async def get_audit_event(
    request: Request,
    event_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        event = await audit_repo.get_event_by_id(db, event_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching audit event") from exc
    if event is None:
        raise HTTPException(status_code=404, detail="Audit event not found")
    return success_response(request=request, data=_to_response(event))
