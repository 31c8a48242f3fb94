from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from taskflow.core.config import get_settings


def build_engine(database_url: str) -> AsyncEngine:
    # Shared engine options for the control plane and SQL-backed tenant stores.
    settings = get_settings()
    engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    # Configure bounded asyncpg pools for predictable latency under load.
    if not database_url.startswith("sqlite"):
        engine_kwargs["pool_size"] = max(1, int(settings.api_db_pool_size))
        engine_kwargs["max_overflow"] = max(0, int(settings.api_db_max_overflow))
        engine_kwargs["pool_timeout"] = 30
        engine_kwargs["pool_recycle"] = 1800
        if settings.api_db_statement_timeout_ms > 0:
            engine_kwargs["connect_args"] = {
                "server_settings": {"statement_timeout": str(int(settings.api_db_statement_timeout_ms))}
            }
    return create_async_engine(database_url, **engine_kwargs)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


settings = get_settings()
engine = build_engine(settings.database_url)
SessionLocal = build_sessionmaker(engine)


def pool_stats(bound: AsyncEngine | None = None) -> dict[str, int | None]:
    # Expose DB pool counters for ops visibility without querying Postgres internals.
    pool = (bound or engine).sync_engine.pool
    checked_out_fn = getattr(pool, "checkedout", None)
    checked_in_fn = getattr(pool, "checkedin", None)
    overflow_fn = getattr(pool, "overflow", None)
    size_fn = getattr(pool, "size", None)
    return {
        "size": int(size_fn()) if callable(size_fn) else None,
        "checked_out": int(checked_out_fn()) if callable(checked_out_fn) else None,
        "checked_in": int(checked_in_fn()) if callable(checked_in_fn) else None,
        "overflow": int(overflow_fn()) if callable(overflow_fn) else None,
    }
