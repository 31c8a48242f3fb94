from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from taskflow.core.errors import error_code_for


EntityType = Literal["task", "project", "organization", "column", "team_member"]
ENTITY_TYPES: tuple[str, ...] = ("task", "project", "organization", "column", "team_member")

STATUS_RECOVERABLE = "recoverable"
STATUS_EXPIRED = "expired"
STATUS_PURGED = "purged"

SCOPE_SHARED = "shared"
SCOPE_TENANT = "tenant"


@dataclass(frozen=True)
class EntityPlacement:
    # Where an entity type lives and how it points at its parent.
    collection: str
    scope: str
    parent_type: str | None = None
    parent_field: str | None = None


PLACEMENTS: dict[str, EntityPlacement] = {
    "organization": EntityPlacement(collection="organizations", scope=SCOPE_SHARED),
    "project": EntityPlacement(
        collection="projects",
        scope=SCOPE_SHARED,
        parent_type="organization",
        parent_field="organizationId",
    ),
    "task": EntityPlacement(
        collection="tasks", scope=SCOPE_TENANT, parent_type="project", parent_field="projectId"
    ),
    "column": EntityPlacement(
        collection="columns", scope=SCOPE_TENANT, parent_type="project", parent_field="projectId"
    ),
    "team_member": EntityPlacement(
        collection="team_members",
        scope=SCOPE_TENANT,
        parent_type="organization",
        parent_field="organizationId",
    ),
}


def placement_for(entity_type: str) -> EntityPlacement:
    try:
        return PLACEMENTS[entity_type]
    except KeyError:
        raise ValueError(f"unsupported entity type: {entity_type}") from None


def ensure_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class EntityReference:
    entity_id: str
    entity_type: str
    candidate_organization_id: str | None = None
    candidate_user_id: str | None = None
    # Lets tenant-resident children (tasks, columns) find their owner through the parent.
    parent_entity_id: str | None = None
    parent_entity_type: str | None = None


@dataclass(frozen=True)
class Actor:
    id: str
    email: str = ""


@dataclass(frozen=True)
class SoftDeletedEntity:
    id: str
    entity_type: str
    entity_id: str
    entity_data: dict[str, Any]
    deleted_at: datetime
    deleted_by: str
    deleted_by_email: str
    recovery_deadline: datetime
    parent_entity_id: str | None = None
    parent_entity_type: str | None = None
    reason: str | None = None

    def status(self, now: datetime) -> str:
        # Derived from the clock on every read so it cannot drift from the deadline.
        return STATUS_EXPIRED if now > self.recovery_deadline else STATUS_RECOVERABLE

    def is_recoverable(self, now: datetime) -> bool:
        return self.status(now) == STATUS_RECOVERABLE


@dataclass(frozen=True)
class DeletedItemFilters:
    entity_type: str | None = None
    parent_entity_id: str | None = None
    parent_entity_type: str | None = None
    deleted_by: str | None = None
    deleted_after: datetime | None = None
    deleted_before: datetime | None = None
    include_expired: bool = False


@dataclass(frozen=True)
class DeletionSummary:
    total: int
    expiring_within_24h: int
    expiring_soon: int
    expired_pending_cleanup: int
    by_type: dict[str, int]


@dataclass(frozen=True)
class RecoveryResult:
    record_id: str
    entity_id: str
    entity_type: str
    tenant_key: str
    restored: dict[str, Any]


@dataclass(frozen=True)
class BulkActionResult:
    id: str
    success: bool
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def ok(cls, item_id: str) -> "BulkActionResult":
        return cls(id=item_id, success=True)

    @classmethod
    def failure(cls, item_id: str, exc: BaseException) -> "BulkActionResult":
        return cls(id=item_id, success=False, error=str(exc) or type(exc).__name__, error_code=error_code_for(exc))


@dataclass(frozen=True)
class BulkActionSummary:
    total: int
    succeeded: int
    failed: int
    results: list[BulkActionResult] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: list[BulkActionResult]) -> "BulkActionSummary":
        succeeded = sum(1 for result in results if result.success)
        return cls(
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=list(results),
        )


@dataclass
class SweepReport:
    scanned: int = 0
    purged: int = 0
    skipped: int = 0
    failed: int = 0
