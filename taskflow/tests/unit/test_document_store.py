from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from taskflow.core.errors import BackendConfigError, BackendUnavailableError
from taskflow.providers.backends.base import DocumentHandle, FirestoreHandle
from taskflow.providers.backends.document import SqlDocumentStore
from taskflow.providers.backends.factory import BackendParams, connect_backend


@pytest.fixture
def store(db_engine) -> SqlDocumentStore:
    return SqlDocumentStore(db_engine, name="org:acme", owns_engine=False)


@pytest.mark.asyncio
async def test_put_get_and_upsert(store: SqlDocumentStore) -> None:
    await store.put("tasks", "T1", {"id": "T1", "title": "Draft"})
    await store.put("tasks", "T1", {"id": "T1", "title": "Final"})

    assert await store.get("tasks", "T1") == {"id": "T1", "title": "Final"}
    assert await store.get("tasks", "T2") is None
    # Collections are separate keyspaces.
    assert await store.get("columns", "T1") is None


@pytest.mark.asyncio
async def test_find_matches_field_value(store: SqlDocumentStore) -> None:
    await store.put("columns", "c1", {"id": "c1", "projectId": "P1-long", "order": 1})
    await store.put("columns", "c2", {"id": "c2", "projectId": "P1-long", "order": 0})
    await store.put("columns", "c3", {"id": "c3", "projectId": "P1", "order": 0})

    found = await store.find("columns", "projectId", "P1-long")
    assert [doc["id"] for doc in found] == ["c1", "c2"]
    assert [doc["id"] for doc in await store.find("columns", "order", 0)] == ["c2", "c3"]
    assert len(await store.find("columns", "projectId", "P1-long", limit=1)) == 1
    assert await store.find("columns", "projectId", "P9") == []


@pytest.mark.asyncio
async def test_update_and_delete_report_missing_documents(store: SqlDocumentStore) -> None:
    await store.put("tasks", "T1", {"id": "T1", "status": "todo"})

    assert await store.update("tasks", "T1", {"status": "done"}) is True
    assert (await store.get("tasks", "T1"))["status"] == "done"
    assert await store.update("tasks", "T9", {"status": "done"}) is False

    assert await store.delete("tasks", "T1") is True
    assert await store.delete("tasks", "T1") is False


@pytest.mark.asyncio
async def test_unreachable_database_maps_to_unavailable(tmp_path) -> None:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nested' / 'db.sqlite'}")
    store = SqlDocumentStore(engine, name="org:down")
    try:
        with pytest.raises(BackendUnavailableError):
            await store.ping()
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_ping_and_borrowed_engine_survives_close(store: SqlDocumentStore, db_engine) -> None:
    await store.ping()
    await store.close()
    # The control-plane engine is still usable after a borrowing store closes.
    await SqlDocumentStore(db_engine, owns_engine=False).ping()


@pytest.mark.asyncio
async def test_connect_backend_picks_handle_variant_from_engine(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)
    document = await connect_backend(
        BackendParams(
            tenant_key="org:acme",
            backend_kind="per_org_hosted",
            engine="document",
            connection_string=f"sqlite+aiosqlite:///{tmp_path / 'acme.db'}",
        )
    )
    firestore = await connect_backend(
        BackendParams(
            tenant_key="org:fs", backend_kind="per_org_hosted", engine="firestore", connection_string="acme-gcp"
        )
    )
    try:
        assert isinstance(document, DocumentHandle)
        assert isinstance(firestore, FirestoreHandle)
        assert firestore.engine == "firestore"
    finally:
        await document.store.close()

    with pytest.raises(BackendConfigError):
        await connect_backend(BackendParams(tenant_key="org:x", backend_kind="per_org_hosted", engine="firestore"))
    with pytest.raises(BackendConfigError):
        await connect_backend(
            BackendParams(tenant_key="org:x", backend_kind="per_org_hosted", engine="cassandra", connection_string="x")
        )
