from __future__ import annotations

import copy
from typing import Any

from taskflow.core.errors import BackendUnavailableError


class InMemoryDocumentStore:
    def __init__(self, name: str = "memory", seed: dict[str, dict[str, dict[str, Any]]] | None = None) -> None:
        # Deterministic store keeps tests and local runs free of external services.
        self.name = name
        self.available = True
        self.closed = False
        # Optional per-operation failure injection: {"delete": BackendUnavailableError(...)}.
        self.fail_on: dict[str, Exception] = {}
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self.load(seed or {})

    def load(self, seed: dict[str, dict[str, dict[str, Any]]]) -> None:
        for collection, docs in seed.items():
            for doc_id, data in docs.items():
                self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    def _check(self, operation: str) -> None:
        if not self.available:
            raise BackendUnavailableError(f"{self.name} is unavailable")
        injected = self.fail_on.get(operation)
        if injected is not None:
            raise injected

    def documents(self, collection: str) -> dict[str, dict[str, Any]]:
        return copy.deepcopy(self._collections.get(collection, {}))

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        self._check("get")
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def find(self, collection: str, field: str, value: Any, limit: int | None = None) -> list[dict[str, Any]]:
        self._check("find")
        matches = [
            copy.deepcopy(doc)
            for doc_id, doc in sorted(self._collections.get(collection, {}).items())
            if doc.get(field) == value
        ]
        return matches[:limit] if limit is not None else matches

    async def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self._check("put")
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    async def update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> bool:
        self._check("update")
        doc = self._collections.get(collection, {}).get(doc_id)
        if doc is None:
            return False
        doc.update(copy.deepcopy(changes))
        return True

    async def delete(self, collection: str, doc_id: str) -> bool:
        self._check("delete")
        return self._collections.get(collection, {}).pop(doc_id, None) is not None

    async def ping(self) -> None:
        self._check("ping")

    async def close(self) -> None:
        self.closed = True
