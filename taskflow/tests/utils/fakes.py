from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

from taskflow.core.errors import BackendUnavailableError
from taskflow.providers.backends.base import BackendHandle, DocumentHandle, FirestoreHandle
from taskflow.providers.backends.factory import BackendParams
from taskflow.providers.backends.memory import InMemoryDocumentStore


T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeBackends:
    """Connector handing out in-memory stores per tenant key."""

    def __init__(self) -> None:
        self.stores: dict[str, InMemoryDocumentStore] = {}
        self.connects: list[str] = []
        # Tenant keys whose connect attempts fail as if the host were unreachable.
        self.unreachable: set[str] = set()
        # Hand out a brand-new store on every connect instead of reusing the registered one.
        self.fresh_store_on_connect: set[str] = set()

    def store(self, tenant_key: str) -> InMemoryDocumentStore:
        if tenant_key not in self.stores:
            self.stores[tenant_key] = InMemoryDocumentStore(name=tenant_key)
        return self.stores[tenant_key]

    async def connect(self, params: BackendParams) -> BackendHandle:
        self.connects.append(params.tenant_key)
        # Yield so concurrent callers for the same key overlap with this creation.
        await asyncio.sleep(0)
        if params.tenant_key in self.unreachable:
            raise BackendUnavailableError(f"{params.tenant_key} unreachable")
        if params.tenant_key in self.fresh_store_on_connect:
            self.stores[params.tenant_key] = InMemoryDocumentStore(name=params.tenant_key)
        store = self.store(params.tenant_key)
        if params.engine == "firestore":
            return FirestoreHandle(tenant_key=params.tenant_key, backend_kind=params.backend_kind, store=store)
        return DocumentHandle(tenant_key=params.tenant_key, backend_kind=params.backend_kind, store=store)


def seed_workspace(backends: FakeBackends) -> None:
    # Canonical organization and project records on the shared backend.
    shared = backends.store("shared")
    shared.load(
        {
            "organizations": {"org-1": {"id": "org-1", "name": "Acme"}},
            "projects": {
                "P1": {
                    "id": "P1",
                    "name": "Launch",
                    "organizationId": "org-1",
                    "ownerId": "u-1",
                    "customDbProjectId": "P1-long",
                },
                "P2": {"id": "P2", "name": "Personal", "ownerId": "u-1"},
            },
        }
    )


async def host_organization(resolver, organization_id: str = "org-1", engine: str = "document") -> None:
    # Give the organization its own self-hosted backend.
    await resolver.reconfigure_binding(
        f"org:{organization_id}",
        engine=engine,
        connection_string=f"mongodb://{organization_id}.example.internal/boards",
        database_name="boards",
    )


def seed_board(backends: FakeBackends, tenant_key: str = "org:org-1", task_count: int = 3) -> InMemoryDocumentStore:
    # Columns and tasks of project P1, stored under the long-form project id.
    store = backends.store(tenant_key)
    store.load(
        {
            "columns": {
                "col-todo": {"id": "col-todo", "name": "To Do", "order": 0, "projectId": "P1-long"},
                "col-doing": {"id": "col-doing", "name": "In Progress", "order": 1, "projectId": "P1-long"},
                "col-done": {"id": "col-done", "name": "Done", "order": 2, "projectId": "P1-long"},
            },
            "tasks": {
                f"T{index}": {
                    "id": f"T{index}",
                    "title": f"Task {index}",
                    "projectId": "P1",
                    "columnId": "col-todo",
                    "status": "todo",
                }
                for index in range(1, task_count + 1)
            },
            "team_members": {
                "m-1": {"id": "m-1", "organizationId": "org-1", "userId": "u-1", "role": "member"},
            },
        }
    )
    return store
