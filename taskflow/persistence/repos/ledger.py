from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import and_, delete, or_, select, tuple_, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.domain.entities import DeletedItemFilters, SoftDeletedEntity, ensure_utc
from taskflow.domain.models import SoftDeletedRecord


def to_entity(row: SoftDeletedRecord) -> SoftDeletedEntity:
    return SoftDeletedEntity(
        id=row.id,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        entity_data=dict(row.entity_data or {}),
        deleted_at=ensure_utc(row.deleted_at),
        deleted_by=row.deleted_by,
        deleted_by_email=row.deleted_by_email or "",
        recovery_deadline=ensure_utc(row.recovery_deadline),
        parent_entity_id=row.parent_entity_id,
        parent_entity_type=row.parent_entity_type,
        reason=row.reason,
    )


def insert_record(session: AsyncSession, entity: SoftDeletedEntity) -> SoftDeletedRecord:
    # Callers commit; the record must be durable before the origin document is removed.
    row = SoftDeletedRecord(
        id=entity.id,
        entity_type=entity.entity_type,
        entity_id=entity.entity_id,
        entity_data=entity.entity_data,
        parent_entity_id=entity.parent_entity_id,
        parent_entity_type=entity.parent_entity_type,
        deleted_at=entity.deleted_at,
        deleted_by=entity.deleted_by,
        deleted_by_email=entity.deleted_by_email,
        reason=entity.reason,
        recovery_deadline=entity.recovery_deadline,
    )
    session.add(row)
    return row


async def get_record(session: AsyncSession, record_id: str) -> SoftDeletedRecord | None:
    result = await session.execute(select(SoftDeletedRecord).where(SoftDeletedRecord.id == record_id))
    return result.scalar_one_or_none()


async def get_latest_for_entity(session: AsyncSession, entity_id: str) -> SoftDeletedRecord | None:
    # An entity id can only be in the ledger more than once if ids collide across types.
    result = await session.execute(
        select(SoftDeletedRecord)
        .where(SoftDeletedRecord.entity_id == entity_id)
        .order_by(SoftDeletedRecord.deleted_at.desc(), SoftDeletedRecord.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_records(
    session: AsyncSession,
    filters: DeletedItemFilters,
    *,
    now: datetime,
) -> list[SoftDeletedRecord]:
    stmt = select(SoftDeletedRecord)
    if filters.entity_type:
        stmt = stmt.where(SoftDeletedRecord.entity_type == filters.entity_type)
    if filters.parent_entity_id:
        stmt = stmt.where(SoftDeletedRecord.parent_entity_id == filters.parent_entity_id)
    if filters.parent_entity_type:
        stmt = stmt.where(SoftDeletedRecord.parent_entity_type == filters.parent_entity_type)
    if filters.deleted_by:
        stmt = stmt.where(SoftDeletedRecord.deleted_by == filters.deleted_by)
    if filters.deleted_after:
        stmt = stmt.where(SoftDeletedRecord.deleted_at >= filters.deleted_after)
    if filters.deleted_before:
        stmt = stmt.where(SoftDeletedRecord.deleted_at <= filters.deleted_before)
    if not filters.include_expired:
        stmt = stmt.where(SoftDeletedRecord.recovery_deadline >= now)
    stmt = stmt.order_by(SoftDeletedRecord.deleted_at.desc(), SoftDeletedRecord.id.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_expired_page(
    session: AsyncSession,
    *,
    now: datetime,
    limit: int,
    after: tuple[datetime, str] | None = None,
) -> list[tuple[str, datetime]]:
    # Keyset pagination keeps skipped/failed records from being re-read within one sweep.
    stmt = select(SoftDeletedRecord.id, SoftDeletedRecord.recovery_deadline).where(
        SoftDeletedRecord.recovery_deadline < now
    )
    if after is not None:
        stmt = stmt.where(
            tuple_(SoftDeletedRecord.recovery_deadline, SoftDeletedRecord.id) > tuple_(after[0], after[1])
        )
    stmt = stmt.order_by(SoftDeletedRecord.recovery_deadline, SoftDeletedRecord.id).limit(limit)
    result = await session.execute(stmt)
    return [(row[0], row[1]) for row in result.all()]


def _unclaimed(now: datetime, lease: timedelta):
    return or_(
        SoftDeletedRecord.claimed_by.is_(None),
        SoftDeletedRecord.claimed_at < now - lease,
    )


async def claim_record(
    session: AsyncSession,
    record_id: str,
    *,
    owner: str,
    now: datetime,
    lease: timedelta,
) -> bool:
    # Single conditional UPDATE so only one recovery can hold the record at a time.
    result = await session.execute(
        update(SoftDeletedRecord)
        .where(and_(SoftDeletedRecord.id == record_id, _unclaimed(now, lease)))
        .values(claimed_by=owner, claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1


async def release_claim(session: AsyncSession, record_id: str, *, owner: str) -> bool:
    result = await session.execute(
        update(SoftDeletedRecord)
        .where(SoftDeletedRecord.id == record_id, SoftDeletedRecord.claimed_by == owner)
        .values(claimed_by=None, claimed_at=None)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1


async def delete_claimed(session: AsyncSession, record_id: str, *, owner: str) -> bool:
    result = await session.execute(
        delete(SoftDeletedRecord)
        .where(SoftDeletedRecord.id == record_id, SoftDeletedRecord.claimed_by == owner)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1


async def delete_unclaimed(
    session: AsyncSession,
    record_id: str,
    *,
    now: datetime,
    lease: timedelta,
    expired_only: bool = False,
) -> bool:
    # Delete-if-still-present: a concurrent recovery's claim or a prior delete makes this a no-op.
    conditions = [SoftDeletedRecord.id == record_id, _unclaimed(now, lease)]
    if expired_only:
        conditions.append(SoftDeletedRecord.recovery_deadline < now)
    result = await session.execute(
        delete(SoftDeletedRecord).where(and_(*conditions)).execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1


async def delete_record(session: AsyncSession, record_id: str) -> bool:
    result = await session.execute(
        delete(SoftDeletedRecord)
        .where(SoftDeletedRecord.id == record_id)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1
