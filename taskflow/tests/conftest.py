from __future__ import annotations

from typing import AsyncIterator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from taskflow.apps.api.deps import Services, build_services
from taskflow.core.config import get_settings
from taskflow.domain.models import Base
from taskflow.persistence.db import build_sessionmaker
from taskflow.services.telemetry import reset_telemetry
from taskflow.tests.utils.fakes import FakeBackends, FakeClock, seed_workspace


@pytest.fixture(autouse=True)
def reset_process_state() -> None:
    # Counters and cached settings are process-global; isolate each test.
    get_settings.cache_clear()
    reset_telemetry()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def db_engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    # File-backed SQLite so concurrent sessions see each other's commits.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'taskflow.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_sessionmaker(db_engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backends() -> FakeBackends:
    fakes = FakeBackends()
    seed_workspace(fakes)
    return fakes


@pytest.fixture
async def services(session_factory, backends: FakeBackends, clock: FakeClock) -> AsyncIterator[Services]:
    built = build_services(session_factory, connector=backends.connect, clock=clock)
    yield built
    await built.cache.close_all()
