from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Literal

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskflow.core.config import Settings, get_settings
from taskflow.core.errors import BulkActionValidationError, NotFoundError, TooManyItemsError
from taskflow.domain.entities import (
    Actor,
    BulkActionResult,
    BulkActionSummary,
    EntityReference,
    placement_for,
)
from taskflow.services.audit import record_event
from taskflow.services.recovery import RecoveryEngine
from taskflow.services.resilience import call_with_timeout
from taskflow.services.resolver import DatabaseResolver, ProjectIdMapper
from taskflow.services.soft_delete import SoftDeleteStore
from taskflow.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

BulkActionType = Literal["delete", "move", "assign", "update_status", "change_role", "recover", "permanent_delete"]

# Heavy actions write the ledger and touch two stores per item.
HEAVY_ACTIONS = frozenset({"delete", "recover", "permanent_delete"})
# Direct mutations and the document field each one sets.
FIELD_UPDATES: dict[str, tuple[str, str]] = {
    "move": ("columnId", "column_id"),
    "assign": ("assigneeId", "assignee_id"),
    "update_status": ("status", "status"),
    "change_role": ("role", "role"),
}
_TASK_ONLY = frozenset({"move", "assign", "update_status"})


class BulkAction(BaseModel):
    type: BulkActionType
    target_ids: list[str] = Field(default_factory=list)
    entity_type: Literal["task", "project", "organization", "column", "team_member"] = "task"
    # Resolver hints shared by every item in the batch.
    organization_id: str | None = None
    project_id: str | None = None
    # Action parameters; which one is required depends on the type.
    column_id: str | None = None
    assignee_id: str | None = None
    status: str | None = None
    role: str | None = None
    reason: str | None = None


def batch_limit(action_type: str, settings: Settings | None = None) -> int:
    settings = settings or get_settings()
    if action_type in HEAVY_ACTIONS:
        return max(1, int(settings.bulk_heavy_max_items))
    return max(1, int(settings.bulk_light_max_items))


def validate_action(action: BulkAction, settings: Settings | None = None) -> None:
    """Reject an action before any side effect happens."""
    limit = batch_limit(action.type, settings)
    count = len(action.target_ids)
    if count > limit:
        raise TooManyItemsError(action.type, count, limit)
    if count == 0:
        raise BulkActionValidationError("target_ids must not be empty")
    if any(not item_id for item_id in action.target_ids):
        raise BulkActionValidationError("target_ids must not contain empty ids")
    if len(set(action.target_ids)) != count:
        raise BulkActionValidationError("target_ids must not contain duplicates")
    if action.type in _TASK_ONLY and action.entity_type != "task":
        raise BulkActionValidationError(f"{action.type} applies to tasks only")
    if action.type == "change_role" and action.entity_type != "team_member":
        raise BulkActionValidationError("change_role applies to team members only")
    if action.type in FIELD_UPDATES:
        _, param = FIELD_UPDATES[action.type]
        if not getattr(action, param):
            raise BulkActionValidationError(f"{action.type} requires {param}")


class BulkActionExecutor:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        resolver: DatabaseResolver,
        soft_delete: SoftDeleteStore,
        recovery: RecoveryEngine,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._resolver = resolver
        self._soft_delete = soft_delete
        self._recovery = recovery
        self._settings = settings or get_settings()

    async def execute(self, action: BulkAction, actor: Actor) -> BulkActionSummary:
        validate_action(action, self._settings)
        if action.type == "move":
            await self._verify_move_target(action, actor)

        handler = self._handler_for(action, actor)
        semaphore = asyncio.Semaphore(max(1, int(self._settings.bulk_action_concurrency)))

        async def _run(item_id: str) -> BulkActionResult:
            async with semaphore:
                try:
                    await handler(item_id)
                except Exception as exc:  # noqa: BLE001 - per-item failures are reported, not raised
                    logger.warning(
                        "bulk_action_item_failed action=%s item_id=%s error=%s",
                        action.type,
                        item_id,
                        type(exc).__name__,
                    )
                    return BulkActionResult.failure(item_id, exc)
                return BulkActionResult.ok(item_id)

        results = await asyncio.gather(*(_run(item_id) for item_id in action.target_ids))
        summary = BulkActionSummary.from_results(list(results))

        increment_counter(f"bulk_action.{action.type}.succeeded", summary.succeeded)
        increment_counter(f"bulk_action.{action.type}.failed", summary.failed)
        logger.info(
            "bulk_action_executed action=%s entity_type=%s total=%s succeeded=%s failed=%s",
            action.type,
            action.entity_type,
            summary.total,
            summary.succeeded,
            summary.failed,
        )
        if summary.failed == 0:
            outcome = "success"
        elif summary.succeeded == 0:
            outcome = "failure"
        else:
            outcome = "partial"
        await record_event(
            self._session_factory,
            event_type="bulk_action.executed",
            outcome=outcome,
            actor_id=actor.id,
            resource_type=action.entity_type,
            metadata={
                "action": action.type,
                "total": summary.total,
                "succeeded": summary.succeeded,
                "failed": summary.failed,
                "failed_ids": [result.id for result in summary.results if not result.success],
            },
        )
        return summary

    def _handler_for(self, action: BulkAction, actor: Actor) -> Callable[[str], Awaitable[Any]]:
        if action.type == "delete":
            return lambda item_id: self._soft_delete.soft_delete(
                self._reference(action, actor, item_id), actor, action.reason
            )
        if action.type == "recover":
            return lambda item_id: self._recovery.recover(item_id, actor)
        if action.type == "permanent_delete":
            return lambda item_id: self._recovery.permanently_delete(item_id, actor)
        field, param = FIELD_UPDATES[action.type]
        changes = {field: getattr(action, param)}
        return lambda item_id: self._update(action, actor, item_id, changes)

    async def _update(self, action: BulkAction, actor: Actor, item_id: str, changes: dict[str, Any]) -> None:
        ref = self._reference(action, actor, item_id)
        collection = placement_for(action.entity_type).collection
        handle = await self._resolver.resolve_origin(ref)
        updated = await call_with_timeout(
            lambda: handle.store.update(collection, item_id, changes),
            backend=handle.tenant_key,
            operation="update",
            timeout_ms=self._settings.backend_call_timeout_ms,
        )
        if not updated:
            raise NotFoundError(action.entity_type, item_id)

    async def _verify_move_target(self, action: BulkAction, actor: Actor) -> None:
        # Checked once per batch; a missing column fails the whole request before any item runs.
        column_id = action.column_id or ""
        ref = EntityReference(
            entity_id=column_id,
            entity_type="column",
            candidate_organization_id=action.organization_id,
            candidate_user_id=actor.id,
            parent_entity_id=action.project_id,
            parent_entity_type="project" if action.project_id else None,
        )
        handle = await self._resolver.resolve(ref)
        column = await call_with_timeout(
            lambda: handle.store.get("columns", column_id),
            backend=handle.tenant_key,
            operation="get",
            timeout_ms=self._settings.backend_call_timeout_ms,
        )
        if column is None:
            raise NotFoundError("column", column_id)
        if action.project_id:
            allowed = await ProjectIdMapper(self._resolver).candidate_ids(action.project_id)
            if column.get("projectId") not in allowed:
                raise BulkActionValidationError(f"column {column_id} does not belong to project {action.project_id}")

    def _reference(self, action: BulkAction, actor: Actor, item_id: str) -> EntityReference:
        placement = placement_for(action.entity_type)
        parent_id: str | None = None
        if placement.parent_type == "project":
            parent_id = action.project_id
        elif placement.parent_type == "organization":
            parent_id = action.organization_id
        return EntityReference(
            entity_id=item_id,
            entity_type=action.entity_type,
            candidate_organization_id=action.organization_id,
            candidate_user_id=actor.id,
            parent_entity_id=parent_id,
            parent_entity_type=placement.parent_type if parent_id else None,
        )
