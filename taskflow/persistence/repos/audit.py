from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.domain.models import AuditEvent


async def list_events(
    session: AsyncSession,
    *,
    tenant_key: str | None = None,
    event_type: str | None = None,
    outcome: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[AuditEvent]:
    stmt = select(AuditEvent)
    if tenant_key:
        stmt = stmt.where(AuditEvent.tenant_key == tenant_key)
    if event_type:
        stmt = stmt.where(AuditEvent.event_type == event_type)
    if outcome:
        stmt = stmt.where(AuditEvent.outcome == outcome)
    if resource_type:
        stmt = stmt.where(AuditEvent.resource_type == resource_type)
    if resource_id:
        stmt = stmt.where(AuditEvent.resource_id == resource_id)
    if occurred_from:
        stmt = stmt.where(AuditEvent.occurred_at >= occurred_from)
    if occurred_to:
        stmt = stmt.where(AuditEvent.occurred_at <= occurred_to)

    stmt = stmt.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc())
    stmt = stmt.offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_event_by_id(session: AsyncSession, event_id: int) -> AuditEvent | None:
    result = await session.execute(select(AuditEvent).where(AuditEvent.id == event_id))
    return result.scalar_one_or_none()
