from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Iterable, Protocol, Sequence

from taskflow.domain.entities import EntityReference
from taskflow.services.resolver import DatabaseResolver, ProjectIdMapper


logger = logging.getLogger(__name__)

# Board column vocabularies; a source and a target match when both hit the same group.
ALIAS_GROUPS: dict[str, tuple[str, ...]] = {
    "todo": ("todo", "to do", "backlog", "new", "pending"),
    "in progress": ("in-progress", "in progress", "inprogress", "doing", "active", "working", "wip"),
    "review": ("review", "testing", "qa", "pending review", "code review"),
    "done": ("done", "completed", "finished", "closed", "complete"),
}


@dataclass(frozen=True)
class Column:
    id: str
    name: str
    order: int = 0

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Column":
        return cls(
            id=str(doc.get("id") or doc.get("_id") or ""),
            name=str(doc.get("name") or ""),
            order=int(doc.get("order") or 0),
        )


class ColumnMatchStrategy(Protocol):
    name: str

    def match(self, source: Column, targets: Sequence[Column]) -> Column | None:
        ...


class ExactNameStrategy:
    name = "exact"

    def match(self, source: Column, targets: Sequence[Column]) -> Column | None:
        wanted = source.name.strip().lower()
        for target in targets:
            if target.name.strip().lower() == wanted:
                return target
        return None


class AliasGroupStrategy:
    name = "alias"

    def __init__(self, groups: dict[str, tuple[str, ...]] | None = None) -> None:
        self._groups = groups or ALIAS_GROUPS

    def _groups_for(self, name: str) -> set[str]:
        lowered = name.lower()
        return {group for group, aliases in self._groups.items() if any(alias in lowered for alias in aliases)}

    def match(self, source: Column, targets: Sequence[Column]) -> Column | None:
        source_groups = self._groups_for(source.name)
        if not source_groups:
            return None
        for target in targets:
            if source_groups & self._groups_for(target.name):
                return target
        return None


class FirstColumnFallback:
    name = "fallback"

    def match(self, source: Column, targets: Sequence[Column]) -> Column | None:
        return min(targets, key=lambda column: column.order) if targets else None


DEFAULT_STRATEGIES: tuple[ColumnMatchStrategy, ...] = (ExactNameStrategy(), AliasGroupStrategy(), FirstColumnFallback())


def match_columns(
    source: Iterable[Column],
    targets: Sequence[Column],
    strategies: Sequence[ColumnMatchStrategy] = DEFAULT_STRATEGIES,
) -> dict[str, str]:
    # Each source column is matched on its own; unmatched columns are left out.
    mapping: dict[str, str] = {}
    for column in source:
        for strategy in strategies:
            target = strategy.match(column, targets)
            if target is not None:
                mapping[column.id] = target.id
                logger.debug(
                    "column_matched source=%s target=%s strategy=%s", column.id, target.id, strategy.name
                )
                break
    return mapping


async def load_project_columns(
    resolver: DatabaseResolver,
    project_id: str,
    *,
    organization_id: str | None = None,
    user_id: str | None = None,
) -> list[Column]:
    # Import collaborators resolve the target board the same way every other write does.
    ref = EntityReference(
        entity_id=project_id,
        entity_type="column",
        candidate_organization_id=organization_id,
        candidate_user_id=user_id,
        parent_entity_id=project_id,
        parent_entity_type="project",
    )
    handle = await resolver.resolve(ref)
    documents = await ProjectIdMapper(resolver).find_by_project(handle.store, "columns", project_id)
    return sorted((Column.from_document(doc) for doc in documents), key=lambda column: (column.order, column.id))
