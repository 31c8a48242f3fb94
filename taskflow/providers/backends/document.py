from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator

from sqlalchemy import select, text
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from taskflow.core.errors import BackendError, BackendUnavailableError
from taskflow.domain.models import StoredDocument
from taskflow.persistence.db import build_sessionmaker


logger = logging.getLogger(__name__)


class SqlDocumentStore:
    # JSON rows keyed by (collection, id). A borrowed engine is left open on close.
    def __init__(self, engine: AsyncEngine, *, name: str = "document", owns_engine: bool = True) -> None:
        self.name = name
        self._engine = engine
        self._owns_engine = owns_engine
        self._sessionmaker: async_sessionmaker[AsyncSession] = build_sessionmaker(engine)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        # Map driver connectivity errors onto the backend taxonomy the resolver understands.
        try:
            async with self._sessionmaker() as session:
                yield session
        except (OperationalError, InterfaceError, OSError) as exc:
            raise BackendUnavailableError(f"{self.name} unreachable: {exc}") from exc
        except SQLAlchemyError as exc:
            raise BackendError(f"{self.name} query failed: {exc}") from exc

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        async with self._session() as session:
            row = await session.get(StoredDocument, (collection, doc_id))
            return dict(row.data) if row is not None else None

    async def find(self, collection: str, field: str, value: Any, limit: int | None = None) -> list[dict[str, Any]]:
        column = StoredDocument.data[field]
        # Typed JSON accessors compile to ->> / json_extract on both dialects.
        if isinstance(value, bool):
            predicate = column.as_boolean() == value
        elif isinstance(value, int):
            predicate = column.as_integer() == value
        elif isinstance(value, float):
            predicate = column.as_float() == value
        else:
            predicate = column.as_string() == str(value)
        stmt = (
            select(StoredDocument)
            .where(StoredDocument.collection == collection, predicate)
            .order_by(StoredDocument.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session() as session:
            result = await session.execute(stmt)
            return [dict(row.data) for row in result.scalars().all()]

    async def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        async with self._session() as session:
            # merge() upserts on the composite primary key.
            await session.merge(StoredDocument(collection=collection, id=doc_id, data=dict(data)))
            await session.commit()

    async def update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> bool:
        async with self._session() as session:
            row = await session.get(StoredDocument, (collection, doc_id))
            if row is None:
                return False
            # Reassign so the JSON column is flagged dirty.
            row.data = {**row.data, **changes}
            await session.commit()
            return True

    async def delete(self, collection: str, doc_id: str) -> bool:
        async with self._session() as session:
            row = await session.get(StoredDocument, (collection, doc_id))
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
            return True

    async def ping(self) -> None:
        async with self._session() as session:
            await session.execute(text("SELECT 1"))

    async def close(self) -> None:
        if self._owns_engine:
            await self._engine.dispose()
            logger.info("document_store_closed name=%s", self.name)
