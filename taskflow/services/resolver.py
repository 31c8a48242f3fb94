from __future__ import annotations

import logging
import time
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskflow.core.config import SHARED_TENANT_KEY, Settings, get_settings
from taskflow.core.errors import (
    BackendConfigError,
    BackendError,
    BackendUnavailableError,
    NotFoundError,
    ResolutionError,
)
from taskflow.domain.entities import SCOPE_SHARED, EntityReference, placement_for
from taskflow.domain.models import TenantBinding
from taskflow.persistence.repos import bindings as bindings_repo
from taskflow.providers.backends.base import BackendHandle, DocumentStore
from taskflow.providers.backends.factory import BackendConnector, BackendParams, connect_backend, shared_params
from taskflow.services.connections import ConnectionCache
from taskflow.services.resilience import call_with_timeout, is_liveness_error
from taskflow.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

STEP_CANDIDATE_ORGANIZATION = "candidate_organization"
STEP_OWNING_ORGANIZATION = "owning_organization"
STEP_PERSONAL = "personal"
STEP_SHARED = "shared"

# Failures that move the chain to its next step instead of aborting it.
StepFailure = (BackendError, SQLAlchemyError, TimeoutError, OSError)


class DatabaseResolver:
    # Chain: candidate org, owning org, candidate user, shared. Only a shared failure surfaces.
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: ConnectionCache,
        *,
        connector: BackendConnector = connect_backend,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        # Injectable so tests can hand out in-memory stores without touching a network.
        self._connector = connector
        self._settings = settings or get_settings()

    @property
    def cache(self) -> ConnectionCache:
        return self._cache

    @property
    def timeout_ms(self) -> int:
        return self._settings.backend_call_timeout_ms

    async def resolve(self, ref: EntityReference) -> BackendHandle:
        attempted: list[str] = []
        candidate_org = ref.candidate_organization_id

        if candidate_org:
            attempted.append(STEP_CANDIDATE_ORGANIZATION)
            try:
                return await self._organization_handle(candidate_org)
            except StepFailure as exc:
                self._step_failed(STEP_CANDIDATE_ORGANIZATION, ref, exc)

        owner: str | None = None
        attempted.append(STEP_OWNING_ORGANIZATION)
        try:
            owner = await self.get_owning_organization(ref)
        except StepFailure as exc:
            self._step_failed(STEP_OWNING_ORGANIZATION, ref, exc)
        # Retrying the candidate organization that just failed cannot succeed.
        if owner and owner != candidate_org:
            try:
                return await self._organization_handle(owner)
            except StepFailure as exc:
                self._step_failed(STEP_OWNING_ORGANIZATION, ref, exc)

        if ref.candidate_user_id:
            attempted.append(STEP_PERSONAL)
            try:
                return await self._user_handle(ref.candidate_user_id)
            except StepFailure as exc:
                self._step_failed(STEP_PERSONAL, ref, exc)

        attempted.append(STEP_SHARED)
        try:
            return await self.resolve_shared()
        except StepFailure as exc:
            increment_counter("resolver.exhausted")
            logger.error(
                "resolver_exhausted entity_id=%s entity_type=%s steps=%s error=%s",
                ref.entity_id,
                ref.entity_type,
                ",".join(attempted),
                type(exc).__name__,
            )
            raise ResolutionError(ref.entity_id, attempted) from exc

    async def resolve_origin(self, ref: EntityReference) -> BackendHandle:
        # Canonical records (organizations, projects) always live on the shared backend.
        if placement_for(ref.entity_type).scope == SCOPE_SHARED:
            try:
                return await self.resolve_shared()
            except StepFailure as exc:
                raise ResolutionError(ref.entity_id, [STEP_SHARED]) from exc
        return await self.resolve(ref)

    async def resolve_shared(self) -> BackendHandle:
        return await self._acquire(shared_params())

    async def resolve_tenant(self, tenant_key: str) -> BackendHandle:
        if tenant_key == SHARED_TENANT_KEY:
            return await self.resolve_shared()
        binding = await self.get_binding(tenant_key)
        if binding is None or not binding.connection_string:
            return await self.resolve_shared()
        return await self._acquire(BackendParams.from_binding(binding))

    async def shared_store(self) -> DocumentStore:
        return (await self.resolve_shared()).store

    async def get_owning_organization(self, ref: EntityReference) -> str | None:
        # Owning organization id from the canonical record, or None when there is none.
        store = await self.shared_store()
        if ref.entity_type == "organization":
            record = await self._shared_get(store, "organizations", ref.entity_id)
            return ref.entity_id if record is not None else None
        if ref.entity_type == "project":
            project = await ProjectIdMapper(self).get_project(ref.entity_id)
            return _organization_of(project)
        if ref.parent_entity_type == "project" and ref.parent_entity_id:
            project = await ProjectIdMapper(self).get_project(ref.parent_entity_id)
            return _organization_of(project)
        if ref.parent_entity_type == "organization" and ref.parent_entity_id:
            record = await self._shared_get(store, "organizations", ref.parent_entity_id)
            return ref.parent_entity_id if record is not None else None
        return None

    async def get_binding(self, tenant_key: str) -> TenantBinding | None:
        async with self._session_factory() as session:
            return await bindings_repo.get_binding(session, tenant_key)

    async def reconfigure_binding(
        self,
        tenant_key: str,
        *,
        engine: str,
        connection_string: str | None,
        database_name: str | None = None,
        backend_kind: str | None = None,
    ) -> TenantBinding:
        engine = engine.lower()
        if engine not in bindings_repo.ENGINES:
            raise BackendConfigError(f"unsupported backend engine {engine!r}")
        tenant_type, tenant_id = _split_tenant_key(tenant_key)
        if tenant_type == "shared":
            raise BackendConfigError("the shared backend is configured through settings")
        kind = backend_kind or _default_kind(tenant_type)
        if kind not in bindings_repo.BACKEND_KINDS:
            raise BackendConfigError(f"unsupported backend kind {kind!r}")
        if connection_string:
            # Refuse to store parameters that cannot reach a backend.
            await self.check_connection(
                BackendParams(
                    tenant_key=tenant_key,
                    backend_kind=kind,
                    engine=engine,
                    connection_string=connection_string,
                    database_name=database_name,
                )
            )
        async with self._session_factory() as session:
            binding = await bindings_repo.get_binding(session, tenant_key)
            if binding is None:
                binding = bindings_repo.add_binding(
                    session,
                    tenant_key=tenant_key,
                    tenant_type=tenant_type,
                    tenant_id=tenant_id,
                    backend_kind=kind,
                    engine=engine,
                    connection_string=connection_string,
                    database_name=database_name,
                )
            else:
                binding.backend_kind = kind
                binding.engine = engine
                binding.connection_string = connection_string
                binding.database_name = database_name
            await session.commit()
        self._cache.invalidate(tenant_key)
        logger.info("binding_reconfigured tenant=%s kind=%s engine=%s", tenant_key, kind, engine)
        return binding

    async def check_binding(self, tenant_key: str) -> dict[str, Any]:
        if tenant_key == SHARED_TENANT_KEY:
            params = shared_params()
        else:
            binding = await self.get_binding(tenant_key)
            if binding is None:
                raise NotFoundError("tenant_binding", tenant_key)
            params = BackendParams.from_binding(binding) if binding.connection_string else shared_params()
        latency_ms = await self.check_connection(params)
        return {"tenant_key": tenant_key, "checked": params.tenant_key, "reachable": True, "latency_ms": latency_ms}

    async def check_connection(self, params: BackendParams) -> float:
        # Throwaway handle, never cached; returns connect plus ping latency in ms.
        started = time.monotonic()
        try:
            handle = await call_with_timeout(
                lambda: self._connector(params),
                backend=params.tenant_key,
                operation="connect",
                timeout_ms=self._settings.backend_call_timeout_ms,
            )
        except OSError as exc:
            raise BackendUnavailableError(f"cannot reach backend for {params.tenant_key}") from exc
        except (SQLAlchemyError, ValueError) as exc:
            raise BackendConfigError(f"invalid connection parameters for {params.tenant_key}") from exc
        try:
            await self._ping(handle)
        except BackendError:
            logger.warning("backend_check_failed %s", params.describe())
            raise
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("backend_check_failed %s", params.describe())
            raise BackendUnavailableError(f"backend for {params.tenant_key} did not answer") from exc
        finally:
            await handle.store.close()
        latency_ms = round((time.monotonic() - started) * 1000, 2)
        logger.info("backend_check_ok %s latency_ms=%s", params.describe(), latency_ms)
        return latency_ms

    def describe(self, handle: BackendHandle) -> dict[str, Any]:
        return {"tenant_key": handle.tenant_key, "backend_kind": handle.backend_kind, "engine": handle.engine}

    async def _organization_handle(self, organization_id: str) -> BackendHandle:
        binding = await self.get_binding(bindings_repo.organization_key(organization_id))
        # Organizations that never enabled self-hosting live on the shared backend.
        if binding is None or not binding.connection_string:
            return await self.resolve_shared()
        return await self._acquire(BackendParams.from_binding(binding))

    async def _user_handle(self, user_id: str) -> BackendHandle:
        binding = await self._ensure_personal_binding(user_id)
        if not binding.connection_string:
            return await self.resolve_shared()
        return await self._acquire(BackendParams.from_binding(binding))

    async def _ensure_personal_binding(self, user_id: str) -> TenantBinding:
        tenant_key = bindings_repo.user_key(user_id)
        async with self._session_factory() as session:
            binding = await bindings_repo.get_binding(session, tenant_key)
            if binding is not None:
                return binding
            binding = bindings_repo.add_binding(
                session,
                tenant_key=tenant_key,
                tenant_type="user",
                tenant_id=user_id,
                backend_kind=bindings_repo.BACKEND_PER_USER,
                engine=self._settings.default_tenant_engine,
                connection_string=None,
                database_name=None,
            )
            try:
                await session.commit()
            except IntegrityError:
                # A concurrent request created it first; use theirs.
                await session.rollback()
                existing = await bindings_repo.get_binding(session, tenant_key)
                if existing is None:
                    raise
                return existing
            logger.info("personal_binding_created tenant=%s", tenant_key)
            return binding

    async def _acquire(self, params: BackendParams) -> BackendHandle:
        async def _create() -> BackendHandle:
            return await call_with_timeout(
                lambda: self._connector(params),
                backend=params.tenant_key,
                operation="connect",
                timeout_ms=self._settings.backend_call_timeout_ms,
            )

        handle = await self._cache.get_or_create(params.tenant_key, _create)
        if not self._settings.resolver_validate_liveness:
            return handle
        try:
            await self._ping(handle)
        except Exception as exc:
            if not is_liveness_error(exc):
                raise
            # Broken handles are replaced, never kept; a second failure fails the step.
            logger.warning(
                "backend_liveness_failed %s error=%s action=recreate",
                params.describe(),
                type(exc).__name__,
            )
            increment_counter("resolver.liveness_recreate")
            self._cache.invalidate(params.tenant_key, handle)
            handle = await self._cache.get_or_create(params.tenant_key, _create)
            await self._ping(handle)
        return handle

    async def _ping(self, handle: BackendHandle) -> None:
        await call_with_timeout(
            handle.store.ping,
            backend=handle.tenant_key,
            operation="ping",
            timeout_ms=self._settings.backend_call_timeout_ms,
        )

    async def _shared_get(self, store: DocumentStore, collection: str, doc_id: str) -> dict[str, Any] | None:
        return await call_with_timeout(
            lambda: store.get(collection, doc_id),
            backend=SHARED_TENANT_KEY,
            operation="get",
            timeout_ms=self._settings.backend_call_timeout_ms,
        )

    def _step_failed(self, step: str, ref: EntityReference, exc: BaseException) -> None:
        increment_counter(f"resolver.step_failed.{step}")
        logger.warning(
            "resolver_step_failed step=%s entity_id=%s entity_type=%s error=%s",
            step,
            ref.entity_id,
            ref.entity_type,
            type(exc).__name__,
        )


class ProjectIdMapper:
    # Mapped long-form id first, original id only when the mapped query finds nothing.
    def __init__(self, resolver: DatabaseResolver) -> None:
        self._resolver = resolver

    async def get_project(self, project_id: str) -> dict[str, Any] | None:
        store = await self._resolver.shared_store()
        project = await call_with_timeout(
            lambda: store.get("projects", project_id),
            backend="shared",
            operation="get",
            timeout_ms=self._resolver.timeout_ms,
        )
        if project is not None:
            return project
        # Callers sometimes only know the long-form id stored in tenant documents.
        matches = await call_with_timeout(
            lambda: store.find("projects", "customDbProjectId", project_id, limit=1),
            backend="shared",
            operation="find",
            timeout_ms=self._resolver.timeout_ms,
        )
        return matches[0] if matches else None

    async def mapped_id(self, project_id: str) -> str | None:
        project = await self.get_project(project_id)
        if project is None:
            return None
        mapped = project.get("customDbProjectId")
        return str(mapped) if mapped else None

    async def candidate_ids(self, project_id: str) -> list[str]:
        mapped = await self.mapped_id(project_id)
        if mapped and mapped != project_id:
            return [mapped, project_id]
        return [project_id]

    async def find_by_project(
        self,
        store: DocumentStore,
        collection: str,
        project_id: str,
        *,
        field: str = "projectId",
    ) -> list[dict[str, Any]]:
        candidates = await self.candidate_ids(project_id)
        for index, candidate in enumerate(candidates):
            documents = await call_with_timeout(
                lambda: store.find(collection, field, candidate),
                backend=collection,
                operation="find",
                timeout_ms=self._resolver.timeout_ms,
            )
            if documents:
                if index > 0:
                    logger.info(
                        "project_id_fallback collection=%s project_id=%s used=%s",
                        collection,
                        project_id,
                        candidate,
                    )
                return documents
        return []


def _organization_of(project: dict[str, Any] | None) -> str | None:
    if not project:
        return None
    organization_id = project.get("organizationId")
    return str(organization_id) if organization_id else None


def _split_tenant_key(tenant_key: str) -> tuple[str, str | None]:
    if tenant_key == SHARED_TENANT_KEY:
        return "shared", None
    prefix, _, tenant_id = tenant_key.partition(":")
    if prefix == "org" and tenant_id:
        return "organization", tenant_id
    if prefix == "user" and tenant_id:
        return "user", tenant_id
    raise BackendConfigError(f"invalid tenant key {tenant_key!r}")


def _default_kind(tenant_type: str) -> str:
    if tenant_type == "organization":
        return bindings_repo.BACKEND_PER_ORG_HOSTED
    if tenant_type == "user":
        return bindings_repo.BACKEND_PER_USER
    return bindings_repo.BACKEND_SHARED_ADMIN
