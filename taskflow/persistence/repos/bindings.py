from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.domain.models import TenantBinding


BACKEND_SHARED_ADMIN = "shared_admin"
BACKEND_PER_USER = "per_user"
BACKEND_PER_ORG_HOSTED = "per_org_hosted"
BACKEND_KINDS = {BACKEND_SHARED_ADMIN, BACKEND_PER_USER, BACKEND_PER_ORG_HOSTED}

ENGINE_FIRESTORE = "firestore"
ENGINE_DOCUMENT = "document"
ENGINES = {ENGINE_FIRESTORE, ENGINE_DOCUMENT}


def organization_key(organization_id: str) -> str:
    return f"org:{organization_id}"


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


async def get_binding(session: AsyncSession, tenant_key: str) -> TenantBinding | None:
    result = await session.execute(select(TenantBinding).where(TenantBinding.tenant_key == tenant_key))
    return result.scalar_one_or_none()


async def list_bindings(session: AsyncSession, *, tenant_type: str | None = None) -> list[TenantBinding]:
    stmt = select(TenantBinding)
    if tenant_type:
        stmt = stmt.where(TenantBinding.tenant_type == tenant_type)
    result = await session.execute(stmt.order_by(TenantBinding.tenant_key))
    return list(result.scalars().all())


def add_binding(
    session: AsyncSession,
    *,
    tenant_key: str,
    tenant_type: str,
    tenant_id: str | None,
    backend_kind: str,
    engine: str,
    connection_string: str | None,
    database_name: str | None,
) -> TenantBinding:
    # Callers commit; engine is fixed here and never re-derived from the live connection.
    binding = TenantBinding(
        tenant_key=tenant_key,
        tenant_type=tenant_type,
        tenant_id=tenant_id,
        backend_kind=backend_kind,
        engine=engine,
        connection_string=connection_string,
        database_name=database_name,
    )
    session.add(binding)
    return binding
