from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, TypeVar

from taskflow.core.errors import BackendAuthError, BackendConfigError, BackendError, BackendUnavailableError


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Firestore has no cheap server-side ping; a point read of a missing document is the lightest call.
_PING_COLLECTION = "_taskflow_health"


class FirestoreDocumentStore:
    def __init__(
        self,
        project: str | None,
        database: str | None = None,
        *,
        name: str = "firestore",
        client: Any | None = None,
    ) -> None:
        # Validate early so callers get stable config errors instead of SDK stack traces.
        if client is None and not project:
            raise BackendConfigError("firestore binding requires a project id in its connection string")
        self.name = name
        self._project = project
        self._database = database
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            from google.cloud import firestore
        except Exception as exc:  # pragma: no cover - import errors are environment-specific
            raise BackendConfigError(
                "Firestore SDK not available. Install google-cloud-firestore."
            ) from exc
        kwargs: dict[str, Any] = {"project": self._project}
        if self._database:
            kwargs["database"] = self._database
        self._client = firestore.AsyncClient(**kwargs)
        return self._client

    async def _call(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        try:
            from google.api_core import exceptions as gexc
            from google.auth.exceptions import DefaultCredentialsError, RefreshError
        except Exception as exc:  # pragma: no cover - import errors are environment-specific
            raise BackendConfigError("google-api-core not available. Install google-cloud-firestore.") from exc
        try:
            return await func()
        except (gexc.Unauthenticated, gexc.PermissionDenied, DefaultCredentialsError, RefreshError) as exc:
            raise BackendAuthError(f"{self.name} rejected credentials during {operation}") from exc
        except (gexc.ServiceUnavailable, gexc.DeadlineExceeded, gexc.RetryError) as exc:
            raise BackendUnavailableError(f"{self.name} unavailable during {operation}") from exc
        except gexc.GoogleAPICallError as exc:
            raise BackendError(f"{self.name} {operation} failed: {exc}") from exc

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        client = self._get_client()

        async def _get() -> dict[str, Any] | None:
            snapshot = await client.collection(collection).document(doc_id).get()
            return snapshot.to_dict() if snapshot.exists else None

        return await self._call("get", _get)

    async def find(self, collection: str, field: str, value: Any, limit: int | None = None) -> list[dict[str, Any]]:
        client = self._get_client()
        from google.cloud.firestore import FieldFilter

        async def _find() -> list[dict[str, Any]]:
            query = client.collection(collection).where(filter=FieldFilter(field, "==", value))
            if limit is not None:
                query = query.limit(limit)
            return [snapshot.to_dict() async for snapshot in query.stream()]

        return await self._call("find", _find)

    async def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        client = self._get_client()

        async def _put() -> None:
            # set() without merge replaces the document, which makes restores idempotent.
            await client.collection(collection).document(doc_id).set(dict(data))

        await self._call("put", _put)

    async def update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> bool:
        client = self._get_client()

        async def _update() -> bool:
            ref = client.collection(collection).document(doc_id)
            snapshot = await ref.get()
            if not snapshot.exists:
                return False
            await ref.update(dict(changes))
            return True

        return await self._call("update", _update)

    async def delete(self, collection: str, doc_id: str) -> bool:
        client = self._get_client()

        async def _delete() -> bool:
            ref = client.collection(collection).document(doc_id)
            snapshot = await ref.get()
            if not snapshot.exists:
                return False
            await ref.delete()
            return True

        return await self._call("delete", _delete)

    async def ping(self) -> None:
        client = self._get_client()

        async def _ping() -> None:
            await client.collection(_PING_COLLECTION).document("ping").get()

        await self._call("ping", _ping)

    async def close(self) -> None:
        if self._client is None:
            return
        close = getattr(self._client, "close", None)
        if callable(close):
            result = close()
            if inspect.isawaitable(result):
                await result
        logger.info("firestore_store_closed name=%s project=%s", self.name, self._project)
