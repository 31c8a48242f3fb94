from __future__ import annotations

from typing import Any

from google.api_core import exceptions as gexc
import pytest

from taskflow.core.errors import BackendAuthError, BackendConfigError, BackendError, BackendUnavailableError
from taskflow.providers.backends.firestore import FirestoreDocumentStore


class _Snapshot:
    def __init__(self, data: dict[str, Any] | None) -> None:
        self._data = data
        self.exists = data is not None

    def to_dict(self) -> dict[str, Any] | None:
        return dict(self._data) if self._data is not None else None


class _DocumentRef:
    def __init__(self, client: "FakeFirestoreClient", collection: str, doc_id: str) -> None:
        self._client = client
        self._collection = collection
        self._doc_id = doc_id

    def _docs(self) -> dict[str, dict[str, Any]]:
        return self._client.data.setdefault(self._collection, {})

    async def get(self) -> _Snapshot:
        self._client.check()
        return _Snapshot(self._docs().get(self._doc_id))

    async def set(self, data: dict[str, Any]) -> None:
        self._client.check()
        self._docs()[self._doc_id] = dict(data)

    async def update(self, changes: dict[str, Any]) -> None:
        self._client.check()
        self._docs()[self._doc_id].update(changes)

    async def delete(self) -> None:
        self._client.check()
        self._docs().pop(self._doc_id, None)


class _Query:
    def __init__(self, client: "FakeFirestoreClient", collection: str) -> None:
        self._client = client
        self._collection = collection
        self._filters: list[Any] = []
        self._limit: int | None = None

    def where(self, *, filter: Any) -> "_Query":
        self._filters.append(filter)
        return self

    def limit(self, count: int) -> "_Query":
        self._limit = count
        return self

    def document(self, doc_id: str) -> _DocumentRef:
        return _DocumentRef(self._client, self._collection, doc_id)

    async def stream(self):
        self._client.check()
        docs = sorted(self._client.data.get(self._collection, {}).items())
        matches = [
            data
            for _, data in docs
            if all(data.get(item.field_path) == item.value for item in self._filters)
        ]
        for data in matches[: self._limit]:
            yield _Snapshot(data)


class FakeFirestoreClient:
    def __init__(self) -> None:
        self.data: dict[str, dict[str, dict[str, Any]]] = {}
        self.error: Exception | None = None
        self.closed = False

    def check(self) -> None:
        if self.error is not None:
            raise self.error

    def collection(self, name: str) -> _Query:
        return _Query(self, name)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def client() -> FakeFirestoreClient:
    return FakeFirestoreClient()


@pytest.fixture
def store(client: FakeFirestoreClient) -> FirestoreDocumentStore:
    return FirestoreDocumentStore("acme-gcp", name="org:acme", client=client)


@pytest.mark.asyncio
async def test_document_round_trip(store: FirestoreDocumentStore) -> None:
    await store.put("tasks", "T1", {"id": "T1", "status": "todo"})
    assert await store.update("tasks", "T1", {"status": "done"}) is True
    assert await store.get("tasks", "T1") == {"id": "T1", "status": "done"}
    assert await store.delete("tasks", "T1") is True
    assert await store.get("tasks", "T1") is None
    assert await store.update("tasks", "T1", {"status": "done"}) is False
    assert await store.delete("tasks", "T1") is False


@pytest.mark.asyncio
async def test_find_uses_field_filter(store: FirestoreDocumentStore, client: FakeFirestoreClient) -> None:
    client.data["columns"] = {
        "c1": {"id": "c1", "projectId": "P1-long"},
        "c2": {"id": "c2", "projectId": "P1"},
        "c3": {"id": "c3", "projectId": "P1-long"},
    }

    assert [doc["id"] for doc in await store.find("columns", "projectId", "P1-long")] == ["c1", "c3"]
    assert [doc["id"] for doc in await store.find("columns", "projectId", "P1-long", limit=1)] == ["c1"]


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (gexc.ServiceUnavailable("down"), BackendUnavailableError),
        (gexc.DeadlineExceeded("slow"), BackendUnavailableError),
        (gexc.PermissionDenied("nope"), BackendAuthError),
        (gexc.Unauthenticated("who"), BackendAuthError),
        (gexc.InvalidArgument("bad"), BackendError),
    ],
)
@pytest.mark.asyncio
async def test_sdk_errors_map_to_backend_errors(
    store: FirestoreDocumentStore, client: FakeFirestoreClient, error: Exception, expected: type[Exception]
) -> None:
    client.error = error
    with pytest.raises(expected):
        await store.ping()


@pytest.mark.asyncio
async def test_close_releases_client(store: FirestoreDocumentStore, client: FakeFirestoreClient) -> None:
    await store.close()
    assert client.closed is True


def test_missing_project_is_a_config_error() -> None:
    with pytest.raises(BackendConfigError):
        FirestoreDocumentStore(None)
