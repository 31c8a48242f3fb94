from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from taskflow.apps.api.deps import Services, get_actor, get_services
from taskflow.apps.api.response import success_response
from taskflow.domain.entities import (
    Actor,
    BulkActionSummary,
    DeletedItemFilters,
    SoftDeletedEntity,
)
from taskflow.services.bulk_actions import BulkAction, validate_action
from taskflow.services.soft_delete import time_remaining


router = APIRouter(prefix="/recovery", tags=["recovery"])

EntityTypeParam = Literal["task", "project", "organization", "column", "team_member"]


class DeletedItemResponse(BaseModel):
    id: str
    entity_type: str
    entity_id: str
    entity_data: dict[str, Any]
    parent_entity_id: str | None
    parent_entity_type: str | None
    deleted_at: str
    deleted_by: str
    deleted_by_email: str
    reason: str | None
    recovery_deadline: str
    status: str
    time_remaining: str


class DeletionSummaryResponse(BaseModel):
    total: int
    expiring_within_24h: int
    expiring_soon: int
    expired_pending_cleanup: int
    by_type: dict[str, int]


class BulkActionResultResponse(BaseModel):
    id: str
    success: bool
    error: str | None = None
    error_code: str | None = None


class BulkActionSummaryResponse(BaseModel):
    total: int
    succeeded: int
    failed: int
    results: list[BulkActionResultResponse]


class RecoveryResponse(BaseModel):
    record_id: str
    entity_id: str
    entity_type: str
    tenant_key: str
    restored: dict[str, Any]


class BatchRequest(BaseModel):
    ids: list[str] = Field(default_factory=list)


def to_deleted_item(entity: SoftDeletedEntity, now: datetime) -> DeletedItemResponse:
    # Status and countdown are derived per request from the deadline.
    return DeletedItemResponse(
        id=entity.id,
        entity_type=entity.entity_type,
        entity_id=entity.entity_id,
        entity_data=entity.entity_data,
        parent_entity_id=entity.parent_entity_id,
        parent_entity_type=entity.parent_entity_type,
        deleted_at=entity.deleted_at.isoformat(),
        deleted_by=entity.deleted_by,
        deleted_by_email=entity.deleted_by_email,
        reason=entity.reason,
        recovery_deadline=entity.recovery_deadline.isoformat(),
        status=entity.status(now),
        time_remaining=time_remaining(entity, now),
    )


def to_summary_response(summary: BulkActionSummary) -> BulkActionSummaryResponse:
    return BulkActionSummaryResponse(
        total=summary.total,
        succeeded=summary.succeeded,
        failed=summary.failed,
        results=[
            BulkActionResultResponse(
                id=result.id,
                success=result.success,
                error=result.error,
                error_code=result.error_code,
            )
            for result in summary.results
        ],
    )


def _filters(
    entity_type: EntityTypeParam | None,
    parent_entity_id: str | None,
    parent_entity_type: str | None,
    deleted_by: str | None,
    deleted_after: datetime | None,
    deleted_before: datetime | None,
    include_expired: bool,
) -> DeletedItemFilters:
    return DeletedItemFilters(
        entity_type=entity_type,
        parent_entity_id=parent_entity_id,
        parent_entity_type=parent_entity_type,
        deleted_by=deleted_by,
        deleted_after=deleted_after,
        deleted_before=deleted_before,
        include_expired=include_expired,
    )


@router.get("/deleted-items")
async def list_deleted_items(
    request: Request,
    entity_type: EntityTypeParam | None = None,
    parent_entity_id: str | None = None,
    parent_entity_type: str | None = None,
    deleted_by: str | None = None,
    deleted_after: datetime | None = None,
    deleted_before: datetime | None = None,
    include_expired: bool = False,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict:
    filters = _filters(
        entity_type, parent_entity_id, parent_entity_type, deleted_by, deleted_after, deleted_before, include_expired
    )
    items = await services.soft_delete.list_deleted(filters)
    now = services.soft_delete.now()
    payload = [to_deleted_item(item, now).model_dump() for item in items]
    return success_response(request=request, data=payload)


@router.get("/summary")
async def deleted_items_summary(
    request: Request,
    entity_type: EntityTypeParam | None = None,
    parent_entity_id: str | None = None,
    parent_entity_type: str | None = None,
    deleted_by: str | None = None,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict:
    summary = await services.soft_delete.summarize(
        _filters(entity_type, parent_entity_id, parent_entity_type, deleted_by, None, None, True)
    )
    payload = DeletionSummaryResponse(
        total=summary.total,
        expiring_within_24h=summary.expiring_within_24h,
        expiring_soon=summary.expiring_soon,
        expired_pending_cleanup=summary.expired_pending_cleanup,
        by_type=summary.by_type,
    )
    return success_response(request=request, data=payload)


@router.post("/batch-restore")
async def batch_restore(
    request: Request,
    body: BatchRequest,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict:
    # Same ceiling and id checks as a bulk recover, before any record is touched.
    validate_action(BulkAction(type="recover", target_ids=body.ids))
    summary = await services.recovery.batch_recover(body.ids, actor)
    return success_response(request=request, data=to_summary_response(summary))


@router.post("/batch-delete")
async def batch_delete(
    request: Request,
    body: BatchRequest,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict:
    validate_action(BulkAction(type="permanent_delete", target_ids=body.ids))
    summary = await services.recovery.batch_permanently_delete(body.ids, actor)
    return success_response(request=request, data=to_summary_response(summary))


@router.post("/{item_id}/restore")
async def restore_item(
    request: Request,
    item_id: str,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict:
    result = await services.recovery.recover(item_id, actor)
    payload = RecoveryResponse(
        record_id=result.record_id,
        entity_id=result.entity_id,
        entity_type=result.entity_type,
        tenant_key=result.tenant_key,
        restored=result.restored,
    )
    return success_response(request=request, data=payload)


@router.delete("/{item_id}")
async def permanently_delete_item(
    request: Request,
    item_id: str,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict:
    deleted = await services.recovery.permanently_delete(item_id, actor)
    return success_response(request=request, data={"id": item_id, "deleted": deleted})
