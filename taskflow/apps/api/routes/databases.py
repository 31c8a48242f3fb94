from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from taskflow.apps.api.deps import Services, get_actor, get_services
from taskflow.apps.api.response import success_response
from taskflow.domain.entities import Actor, EntityReference
from taskflow.domain.models import TenantBinding
from taskflow.services.audit import record_event


router = APIRouter(prefix="/databases", tags=["databases"])


class ResolveRequest(BaseModel):
    entity_id: str
    entity_type: Literal["task", "project", "organization", "column", "team_member"]
    organization_id: str | None = None
    user_id: str | None = None
    parent_entity_id: str | None = None
    parent_entity_type: str | None = None


class BindingRequest(BaseModel):
    engine: Literal["firestore", "document"]
    connection_string: str | None = None
    database_name: str | None = None
    backend_kind: Literal["per_user", "per_org_hosted"] | None = None


class BindingResponse(BaseModel):
    tenant_key: str
    tenant_type: str
    tenant_id: str | None
    backend_kind: str
    engine: str
    database_name: str | None
    # Connection strings carry credentials and are never echoed back.
    has_connection_string: bool


def _to_binding_response(binding: TenantBinding) -> BindingResponse:
    return BindingResponse(
        tenant_key=binding.tenant_key,
        tenant_type=binding.tenant_type,
        tenant_id=binding.tenant_id,
        backend_kind=binding.backend_kind,
        engine=binding.engine,
        database_name=binding.database_name,
        has_connection_string=bool(binding.connection_string),
    )


@router.post("/resolve")
async def resolve_backend(
    request: Request,
    body: ResolveRequest,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict:
    ref = EntityReference(
        entity_id=body.entity_id,
        entity_type=body.entity_type,
        candidate_organization_id=body.organization_id,
        candidate_user_id=body.user_id,
        parent_entity_id=body.parent_entity_id,
        parent_entity_type=body.parent_entity_type,
    )
    handle = await services.resolver.resolve(ref)
    return success_response(request=request, data=services.resolver.describe(handle))


@router.put("/bindings/{tenant_key}")
async def configure_binding(
    request: Request,
    tenant_key: str,
    body: BindingRequest,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict:
    binding = await services.resolver.reconfigure_binding(
        tenant_key,
        engine=body.engine,
        connection_string=body.connection_string,
        database_name=body.database_name,
        backend_kind=body.backend_kind,
    )
    await record_event(
        services.session_factory,
        event_type="binding.reconfigured",
        outcome="success",
        actor_id=actor.id,
        tenant_key=tenant_key,
        resource_type="tenant_binding",
        resource_id=tenant_key,
        metadata=body.model_dump(),
    )
    return success_response(request=request, data=_to_binding_response(binding))


@router.post("/bindings/{tenant_key}/invalidate-cache")
async def invalidate_cached_connection(
    request: Request,
    tenant_key: str,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict:
    invalidated = services.cache.invalidate(tenant_key)
    return success_response(request=request, data={"tenant_key": tenant_key, "invalidated": invalidated})


@router.get("/cache")
async def connection_cache_stats(
    request: Request,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict:
    return success_response(request=request, data=services.cache.stats())


@router.post("/bindings/{tenant_key}/test")
async def check_binding_connection(
    request: Request,
    tenant_key: str,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict:
    # Opens and pings a throwaway connection for the stored binding; nothing is cached or saved.
    result = await services.resolver.check_binding(tenant_key)
    return success_response(request=request, data=result)
