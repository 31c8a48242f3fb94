from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Awaitable, Callable

from taskflow.core.config import SHARED_TENANT_KEY, get_settings
from taskflow.core.errors import BackendConfigError
from taskflow.domain.models import TenantBinding
from taskflow.persistence.db import build_engine
from taskflow.persistence.repos.bindings import BACKEND_SHARED_ADMIN, ENGINE_DOCUMENT, ENGINE_FIRESTORE
from taskflow.providers.backends.base import BackendHandle, DocumentHandle, FirestoreHandle
from taskflow.providers.backends.document import SqlDocumentStore
from taskflow.providers.backends.firestore import FirestoreDocumentStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackendParams:
    tenant_key: str
    backend_kind: str
    engine: str
    connection_string: str | None = None
    database_name: str | None = None

    @classmethod
    def from_binding(cls, binding: TenantBinding) -> "BackendParams":
        return cls(
            tenant_key=binding.tenant_key,
            backend_kind=binding.backend_kind,
            engine=binding.engine,
            connection_string=binding.connection_string,
            database_name=binding.database_name,
        )

    def describe(self) -> str:
        # Connection strings carry credentials; never log them.
        return f"tenant={self.tenant_key} kind={self.backend_kind} engine={self.engine}"


BackendConnector = Callable[[BackendParams], Awaitable[BackendHandle]]


def shared_params() -> BackendParams:
    settings = get_settings()
    return BackendParams(
        tenant_key=SHARED_TENANT_KEY,
        backend_kind=BACKEND_SHARED_ADMIN,
        engine=settings.shared_backend_engine,
        connection_string=settings.shared_backend_connection_string,
        database_name=settings.shared_backend_database_name,
    )


async def connect_backend(params: BackendParams) -> BackendHandle:
    """Open a store for a binding and wrap it in the handle variant its engine names."""
    engine = (params.engine or "").lower()
    logger.info("backend_connect %s", params.describe())
    if engine == ENGINE_FIRESTORE:
        project = params.connection_string or get_settings().google_cloud_project
        store = FirestoreDocumentStore(project, params.database_name, name=params.tenant_key)
        return FirestoreHandle(tenant_key=params.tenant_key, backend_kind=params.backend_kind, store=store)
    if engine == ENGINE_DOCUMENT:
        if params.connection_string:
            sql_store = SqlDocumentStore(build_engine(params.connection_string), name=params.tenant_key)
        else:
            # No dedicated database: documents live beside the control plane.
            from taskflow.persistence.db import engine as control_plane_engine

            sql_store = SqlDocumentStore(control_plane_engine, name=params.tenant_key, owns_engine=False)
        return DocumentHandle(tenant_key=params.tenant_key, backend_kind=params.backend_kind, store=sql_store)
    raise BackendConfigError(f"unsupported backend engine {params.engine!r} for {params.tenant_key}")
