from __future__ import annotations

from datetime import timedelta
import logging
from typing import Awaitable, Callable
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskflow.core.config import SHARED_TENANT_KEY, Settings, get_settings
from taskflow.core.errors import ExpiredError, LedgerConflictError, NotFoundError
from taskflow.domain.entities import (
    Actor,
    BulkActionResult,
    BulkActionSummary,
    EntityReference,
    RecoveryResult,
    SoftDeletedEntity,
    placement_for,
)
from taskflow.persistence.repos import ledger as ledger_repo
from taskflow.services.audit import record_event
from taskflow.services.resilience import call_with_timeout
from taskflow.services.resolver import DatabaseResolver, ProjectIdMapper
from taskflow.services.soft_delete import Clock, utc_now
from taskflow.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


class RecoveryEngine:
    # Claim, restore by upsert, then delete the claimed record. Failures release the claim.
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

    @property
    def _lease(self) -> timedelta:
        return timedelta(seconds=max(1, int(self._settings.ledger_claim_lease_s)))

    async def find(self, record_or_entity_id: str) -> SoftDeletedEntity | None:
        # Ledger id first, then the most recent record for an original entity id.
        async with self._session_factory() as session:
            row = await ledger_repo.get_record(session, record_or_entity_id)
            if row is None:
                row = await ledger_repo.get_latest_for_entity(session, record_or_entity_id)
            return ledger_repo.to_entity(row) if row is not None else None

    async def recover(self, record_or_entity_id: str, actor: Actor | None = None) -> RecoveryResult:
        entity = await self.find(record_or_entity_id)
        if entity is None:
            raise NotFoundError("deleted_item", record_or_entity_id)
        now = self._clock()
        if now > entity.recovery_deadline:
            increment_counter("recovery.expired")
            raise ExpiredError(entity.id, entity.recovery_deadline)

        owner = uuid4().hex
        async with self._session_factory() as session:
            claimed = await ledger_repo.claim_record(session, entity.id, owner=owner, now=now, lease=self._lease)
            await session.commit()
            if not claimed:
                # Purged or recovered in the meantime, or another recovery holds it.
                if await ledger_repo.get_record(session, entity.id) is None:
                    raise NotFoundError("deleted_item", entity.id)
                raise LedgerConflictError(entity.id)

        try:
            await self._verify_parent(entity)
            handle = await self._resolver.resolve_origin(self._reference(entity))
            placement = placement_for(entity.entity_type)
            # Upsert by original id so a retried recovery never duplicates the document.
            await call_with_timeout(
                lambda: handle.store.put(placement.collection, entity.entity_id, entity.entity_data),
                backend=handle.tenant_key,
                operation="put",
                timeout_ms=self._settings.backend_call_timeout_ms,
            )
        except Exception as exc:
            await self._release(entity.id, owner)
            logger.warning(
                "recovery_failed record_id=%s entity_type=%s entity_id=%s error=%s",
                entity.id,
                entity.entity_type,
                entity.entity_id,
                type(exc).__name__,
            )
            await record_event(
                self._session_factory,
                event_type="entity.recovered",
                outcome="failure",
                actor_id=actor.id if actor else None,
                resource_type=entity.entity_type,
                resource_id=entity.entity_id,
                metadata={"record_id": entity.id},
                error_code=type(exc).__name__,
            )
            raise

        async with self._session_factory() as session:
            removed = await ledger_repo.delete_claimed(session, entity.id, owner=owner)
            await session.commit()
        if not removed:
            # The lease lapsed and the record was taken over; the restore itself already stands.
            logger.warning("recovery_claim_lost record_id=%s entity_id=%s", entity.id, entity.entity_id)

        increment_counter(f"recovery.{entity.entity_type}")
        logger.info(
            "entity_recovered record_id=%s entity_type=%s entity_id=%s tenant=%s",
            entity.id,
            entity.entity_type,
            entity.entity_id,
            handle.tenant_key,
        )
        await record_event(
            self._session_factory,
            event_type="entity.recovered",
            outcome="success",
            actor_id=actor.id if actor else None,
            tenant_key=handle.tenant_key,
            resource_type=entity.entity_type,
            resource_id=entity.entity_id,
            metadata={"record_id": entity.id},
        )
        return RecoveryResult(
            record_id=entity.id,
            entity_id=entity.entity_id,
            entity_type=entity.entity_type,
            tenant_key=handle.tenant_key,
            restored=dict(entity.entity_data),
        )

    async def permanently_delete(self, record_id: str, actor: Actor | None = None) -> bool:
        """Remove a ledger record; live collections are untouched."""
        now = self._clock()
        async with self._session_factory() as session:
            removed = await ledger_repo.delete_unclaimed(session, record_id, now=now, lease=self._lease)
            await session.commit()
            if not removed:
                if await ledger_repo.get_record(session, record_id) is None:
                    raise NotFoundError("deleted_item", record_id)
                raise LedgerConflictError(record_id)
        increment_counter("recovery.permanently_deleted")
        logger.info("deleted_item_purged record_id=%s source=manual", record_id)
        await record_event(
            self._session_factory,
            event_type="entity.purged",
            outcome="success",
            actor_id=actor.id if actor else None,
            resource_type="deleted_item",
            resource_id=record_id,
            metadata={"source": "manual"},
        )
        return True

    async def batch_recover(self, ids: list[str], actor: Actor | None = None) -> BulkActionSummary:
        return await _run_each(ids, lambda item_id: self.recover(item_id, actor))

    async def batch_permanently_delete(self, ids: list[str], actor: Actor | None = None) -> BulkActionSummary:
        return await _run_each(ids, lambda item_id: self.permanently_delete(item_id, actor))

    def _reference(self, entity: SoftDeletedEntity) -> EntityReference:
        # Same chain inputs as the delete: the parent's owner, then the deleting user's scope.
        return EntityReference(
            entity_id=entity.entity_id,
            entity_type=entity.entity_type,
            candidate_user_id=entity.deleted_by or None,
            parent_entity_id=entity.parent_entity_id,
            parent_entity_type=entity.parent_entity_type,
        )

    async def _verify_parent(self, entity: SoftDeletedEntity) -> None:
        if not entity.parent_entity_id or not entity.parent_entity_type:
            return
        if entity.parent_entity_type == "project":
            parent = await ProjectIdMapper(self._resolver).get_project(entity.parent_entity_id)
        else:
            store = await self._resolver.shared_store()
            collection = placement_for(entity.parent_entity_type).collection
            parent = await call_with_timeout(
                lambda: store.get(collection, entity.parent_entity_id),
                backend=SHARED_TENANT_KEY,
                operation="get",
                timeout_ms=self._settings.backend_call_timeout_ms,
            )
        if parent is None:
            raise NotFoundError(
                entity.parent_entity_type,
                entity.parent_entity_id,
                f"cannot restore {entity.entity_type} {entity.entity_id}: "
                f"{entity.parent_entity_type} {entity.parent_entity_id} no longer exists",
            )

    async def _release(self, record_id: str, owner: str) -> None:
        async with self._session_factory() as session:
            await ledger_repo.release_claim(session, record_id, owner=owner)
            await session.commit()


async def _run_each(ids: list[str], action: Callable[[str], Awaitable[object]]) -> BulkActionSummary:
    # One result per id in input order; a failing item never stops the rest.
    results: list[BulkActionResult] = []
    for item_id in ids:
        try:
            await action(item_id)
        except Exception as exc:  # noqa: BLE001 - per-item failures are reported, not raised
            results.append(BulkActionResult.failure(item_id, exc))
        else:
            results.append(BulkActionResult.ok(item_id))
    return BulkActionSummary.from_results(results)
