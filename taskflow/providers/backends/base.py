from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Protocol, Union


class DocumentStore(Protocol):
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        ...

    async def find(self, collection: str, field: str, value: Any, limit: int | None = None) -> list[dict[str, Any]]:
        ...

    async def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        ...

    async def update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> bool:
        ...

    async def delete(self, collection: str, doc_id: str) -> bool:
        ...

    async def ping(self) -> None:
        ...

    async def close(self) -> None:
        ...


@dataclass(frozen=True)
class FirestoreHandle:
    engine: ClassVar[str] = "firestore"

    tenant_key: str
    backend_kind: str
    store: DocumentStore


@dataclass(frozen=True)
class DocumentHandle:
    engine: ClassVar[str] = "document"

    tenant_key: str
    backend_kind: str
    store: DocumentStore


# The variant is chosen from the binding's stored engine, never by probing the store.
BackendHandle = Union[FirestoreHandle, DocumentHandle]
