from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Callable
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskflow.core.config import RECOVERY_WINDOW, Settings, get_settings
from taskflow.core.errors import NotFoundError
from taskflow.domain.entities import (
    Actor,
    DeletedItemFilters,
    DeletionSummary,
    EntityReference,
    SoftDeletedEntity,
    placement_for,
)
from taskflow.persistence.repos import ledger as ledger_repo
from taskflow.services.audit import record_event
from taskflow.services.resilience import call_with_timeout
from taskflow.services.resolver import DatabaseResolver
from taskflow.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def time_remaining(entity: SoftDeletedEntity, now: datetime) -> str:
    # Compact countdown shown next to deleted items: "3h 12m", "45m" or "Expired".
    remaining = entity.recovery_deadline - now
    if remaining < timedelta(0):
        return "Expired"
    total_minutes = int(remaining.total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class SoftDeleteStore:
    # Ledger record is committed before the origin document is removed.
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        resolver: DatabaseResolver,
        *,
        clock: Clock = utc_now,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._resolver = resolver
        self._clock = clock
        self._settings = settings or get_settings()

    def now(self) -> datetime:
        return self._clock()

    async def soft_delete(self, ref: EntityReference, actor: Actor, reason: str | None = None) -> SoftDeletedEntity:
        placement = placement_for(ref.entity_type)
        handle = await self._resolver.resolve_origin(ref)
        store = handle.store
        timeout_ms = self._settings.backend_call_timeout_ms

        snapshot = await call_with_timeout(
            lambda: store.get(placement.collection, ref.entity_id),
            backend=handle.tenant_key,
            operation="get",
            timeout_ms=timeout_ms,
        )
        if snapshot is None:
            raise NotFoundError(ref.entity_type, ref.entity_id)

        parent_id: Any = None
        if placement.parent_field:
            parent_id = snapshot.get(placement.parent_field) or ref.parent_entity_id
        deleted_at = self.now()
        entity = SoftDeletedEntity(
            id=uuid4().hex,
            entity_type=ref.entity_type,
            entity_id=ref.entity_id,
            entity_data=dict(snapshot),
            deleted_at=deleted_at,
            deleted_by=actor.id,
            deleted_by_email=actor.email,
            recovery_deadline=deleted_at + RECOVERY_WINDOW,
            parent_entity_id=str(parent_id) if parent_id else None,
            parent_entity_type=placement.parent_type if parent_id else None,
            reason=reason,
        )

        # Ledger first; a failure here aborts with the origin untouched and is never retried.
        async with self._session_factory() as session:
            try:
                ledger_repo.insert_record(session, entity)
                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                logger.error(
                    "soft_delete_ledger_write_failed entity_type=%s entity_id=%s",
                    ref.entity_type,
                    ref.entity_id,
                )
                raise

        try:
            removed = await call_with_timeout(
                lambda: store.delete(placement.collection, ref.entity_id),
                backend=handle.tenant_key,
                operation="delete",
                timeout_ms=timeout_ms,
            )
        except Exception:
            # A timed-out delete may still have landed; only withdraw once the document is seen again.
            still_present = await self._origin_present(store, placement.collection, ref, handle.tenant_key)
            if still_present:
                await self._withdraw(entity)
                logger.error(
                    "soft_delete_origin_remove_failed entity_type=%s entity_id=%s record_id=%s",
                    ref.entity_type,
                    ref.entity_id,
                    entity.id,
                )
            else:
                logger.error(
                    "soft_delete_outcome_unknown entity_type=%s entity_id=%s record_id=%s origin_present=%s",
                    ref.entity_type,
                    ref.entity_id,
                    entity.id,
                    still_present,
                )
            raise
        if not removed:
            # Someone else removed the document between snapshot and delete.
            await self._withdraw(entity)
            raise NotFoundError(ref.entity_type, ref.entity_id)

        increment_counter(f"soft_delete.{ref.entity_type}")
        logger.info(
            "entity_soft_deleted entity_type=%s entity_id=%s record_id=%s tenant=%s",
            ref.entity_type,
            ref.entity_id,
            entity.id,
            handle.tenant_key,
        )
        await record_event(
            self._session_factory,
            event_type="entity.soft_deleted",
            outcome="success",
            actor_id=actor.id,
            tenant_key=handle.tenant_key,
            resource_type=ref.entity_type,
            resource_id=ref.entity_id,
            metadata={
                "record_id": entity.id,
                "reason": reason,
                "recovery_deadline": entity.recovery_deadline.isoformat(),
            },
        )
        return entity

    async def get(self, record_id: str) -> SoftDeletedEntity | None:
        async with self._session_factory() as session:
            row = await ledger_repo.get_record(session, record_id)
            return ledger_repo.to_entity(row) if row is not None else None

    async def list_deleted(self, filters: DeletedItemFilters | None = None) -> list[SoftDeletedEntity]:
        filters = filters or DeletedItemFilters()
        async with self._session_factory() as session:
            rows = await ledger_repo.list_records(session, filters, now=self.now())
        return [ledger_repo.to_entity(row) for row in rows]

    async def summarize(self, scope: DeletedItemFilters | None = None) -> DeletionSummary:
        # Partitioned against the clock on every call; no stored status is trusted.
        base = scope or DeletedItemFilters()
        filters = DeletedItemFilters(
            entity_type=base.entity_type,
            parent_entity_id=base.parent_entity_id,
            parent_entity_type=base.parent_entity_type,
            deleted_by=base.deleted_by,
            deleted_after=base.deleted_after,
            deleted_before=base.deleted_before,
            include_expired=True,
        )
        now = self.now()
        async with self._session_factory() as session:
            rows = await ledger_repo.list_records(session, filters, now=now)
        entities = [ledger_repo.to_entity(row) for row in rows]

        day_cutoff = now + timedelta(hours=24)
        soon_cutoff = now + timedelta(hours=self._settings.expiring_soon_hours)
        recoverable = [entity for entity in entities if entity.is_recoverable(now)]
        return DeletionSummary(
            total=len(entities),
            expiring_within_24h=sum(1 for entity in recoverable if entity.recovery_deadline <= day_cutoff),
            expiring_soon=sum(1 for entity in recoverable if entity.recovery_deadline <= soon_cutoff),
            expired_pending_cleanup=len(entities) - len(recoverable),
            by_type=dict(Counter(entity.entity_type for entity in entities)),
        )

    async def _origin_present(
        self,
        store: Any,
        collection: str,
        ref: EntityReference,
        tenant_key: str,
    ) -> bool | None:
        # None means the origin could not be read back.
        try:
            document = await call_with_timeout(
                lambda: store.get(collection, ref.entity_id),
                backend=tenant_key,
                operation="get",
                timeout_ms=self._settings.backend_call_timeout_ms,
            )
        except Exception:
            logger.warning(
                "soft_delete_origin_recheck_failed entity_type=%s entity_id=%s",
                ref.entity_type,
                ref.entity_id,
                exc_info=True,
            )
            return None
        return document is not None

    async def _withdraw(self, entity: SoftDeletedEntity) -> None:
        async with self._session_factory() as session:
            await ledger_repo.delete_record(session, entity.id)
            await session.commit()
