from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncGenerator

from fastapi import Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskflow.core.config import Settings, get_settings
from taskflow.domain.entities import Actor
from taskflow.providers.backends.factory import BackendConnector, connect_backend
from taskflow.services.bulk_actions import BulkActionExecutor
from taskflow.services.connections import ConnectionCache
from taskflow.services.recovery import RecoveryEngine
from taskflow.services.resolver import DatabaseResolver
from taskflow.services.soft_delete import Clock, SoftDeleteStore, utc_now
from taskflow.services.sweeper import ExpirySweeper


@dataclass
class Services:
    session_factory: async_sessionmaker[AsyncSession]
    cache: ConnectionCache
    resolver: DatabaseResolver
    soft_delete: SoftDeleteStore
    recovery: RecoveryEngine
    bulk_actions: BulkActionExecutor
    sweeper: ExpirySweeper


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    connector: BackendConnector = connect_backend,
    clock: Clock = utc_now,
    settings: Settings | None = None,
) -> Services:
    # One cache per process; every component shares it through the resolver.
    settings = settings or get_settings()
    cache = ConnectionCache(retire_grace_s=settings.connection_retire_grace_s)
    resolver = DatabaseResolver(session_factory, cache, connector=connector, settings=settings)
    soft_delete = SoftDeleteStore(session_factory, resolver, clock=clock, settings=settings)
    recovery = RecoveryEngine(session_factory, resolver, clock=clock, settings=settings)
    return Services(
        session_factory=session_factory,
        cache=cache,
        resolver=resolver,
        soft_delete=soft_delete,
        recovery=recovery,
        bulk_actions=BulkActionExecutor(session_factory, resolver, soft_delete, recovery, settings=settings),
        sweeper=ExpirySweeper(session_factory, clock=clock, settings=settings),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_services(request).session_factory() as session:
        yield session


def get_actor(
    x_user_id: str | None = Header(default=None),
    x_user_email: str | None = Header(default=None),
) -> Actor:
    # Identity is issued upstream; the gateway forwards the authenticated user in headers.
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "AUTH_UNAUTHORIZED", "message": "X-User-Id header is required"},
        )
    return Actor(id=x_user_id, email=x_user_email or "")
