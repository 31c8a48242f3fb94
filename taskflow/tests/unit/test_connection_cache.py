from __future__ import annotations

import asyncio

import pytest

from taskflow.core.errors import BackendUnavailableError
from taskflow.providers.backends.base import DocumentHandle
from taskflow.providers.backends.memory import InMemoryDocumentStore
from taskflow.services.connections import ConnectionCache
from taskflow.services.telemetry import counters_snapshot


def _handle(tenant_key: str) -> DocumentHandle:
    return DocumentHandle(tenant_key=tenant_key, backend_kind="per_org_hosted", store=InMemoryDocumentStore(tenant_key))


@pytest.mark.asyncio
async def test_concurrent_first_access_creates_one_connection() -> None:
    cache = ConnectionCache()
    calls = {"count": 0}
    release = asyncio.Event()

    async def factory() -> DocumentHandle:
        calls["count"] += 1
        await release.wait()
        return _handle("org:acme")

    waiters = [asyncio.create_task(cache.get_or_create("org:acme", factory)) for _ in range(5)]
    await asyncio.sleep(0)
    release.set()
    handles = await asyncio.gather(*waiters)

    assert calls["count"] == 1
    assert all(handle is handles[0] for handle in handles)
    assert cache.stats()["entries"] == 1
    assert counters_snapshot()["connection_cache.created"] == 1


@pytest.mark.asyncio
async def test_failed_creation_reaches_every_waiter_and_is_not_cached() -> None:
    cache = ConnectionCache()
    attempts = {"count": 0}
    release = asyncio.Event()

    async def failing() -> DocumentHandle:
        attempts["count"] += 1
        await release.wait()
        raise BackendUnavailableError("host down")

    waiters = [asyncio.create_task(cache.get_or_create("org:acme", failing)) for _ in range(3)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*waiters, return_exceptions=True)

    assert attempts["count"] == 1
    assert all(isinstance(result, BackendUnavailableError) for result in results)
    assert cache.peek("org:acme") is None
    assert cache.stats()["in_flight"] == 0

    async def healthy() -> DocumentHandle:
        return _handle("org:acme")

    handle = await cache.get_or_create("org:acme", healthy)
    assert handle.tenant_key == "org:acme"
    assert cache.stats()["failed"] == 1


@pytest.mark.asyncio
async def test_invalidate_forgets_entry_without_closing_it() -> None:
    cache = ConnectionCache()
    first = _handle("user:u-1")

    async def factory() -> DocumentHandle:
        return first

    await cache.get_or_create("user:u-1", factory)
    assert cache.invalidate("user:u-1") is True
    assert cache.peek("user:u-1") is None
    assert first.store.closed is False
    # Invalidating twice is a no-op.
    assert cache.invalidate("user:u-1") is False
    await cache.close_all()


@pytest.mark.asyncio
async def test_invalidate_with_stale_handle_keeps_replacement() -> None:
    cache = ConnectionCache()
    stale = _handle("org:acme")
    replacement = _handle("org:acme")

    async def make_stale() -> DocumentHandle:
        return stale

    async def make_replacement() -> DocumentHandle:
        return replacement

    await cache.get_or_create("org:acme", make_stale)
    cache.invalidate("org:acme", stale)
    await cache.get_or_create("org:acme", make_replacement)

    assert cache.invalidate("org:acme", stale) is False
    assert cache.peek("org:acme") is replacement
    await cache.close_all()


@pytest.mark.asyncio
async def test_close_all_closes_live_and_retired_handles() -> None:
    cache = ConnectionCache()
    retired = _handle("org:old")
    live = _handle("org:new")

    async def make_retired() -> DocumentHandle:
        return retired

    async def make_live() -> DocumentHandle:
        return live

    await cache.get_or_create("org:old", make_retired)
    await cache.get_or_create("org:new", make_live)
    cache.invalidate("org:old")
    await cache.close_all()

    assert retired.store.closed is True
    assert live.store.closed is True
    assert cache.stats()["entries"] == 0


@pytest.mark.asyncio
async def test_retired_handles_close_after_grace_period() -> None:
    cache = ConnectionCache(retire_grace_s=0)
    handles: list[DocumentHandle] = []

    async def factory() -> DocumentHandle:
        handle = _handle("org:acme")
        handles.append(handle)
        return handle

    # Repeated failovers must not pile up open handles.
    for _ in range(500):
        await cache.get_or_create("org:acme", factory)
        cache.invalidate("org:acme")
    await asyncio.sleep(0.01)

    assert len(handles) == 500
    assert all(handle.store.closed for handle in handles)
    assert cache.stats()["retired"] == 0
    assert counters_snapshot()["connection_cache.closed"] == 500
    await cache.close_all()


@pytest.mark.asyncio
async def test_retired_handle_stays_open_during_grace_period() -> None:
    cache = ConnectionCache(retire_grace_s=60)
    first = _handle("org:acme")

    async def factory() -> DocumentHandle:
        return first

    await cache.get_or_create("org:acme", factory)
    cache.invalidate("org:acme")
    await asyncio.sleep(0.01)

    assert first.store.closed is False
    assert cache.stats()["retired"] == 1
    await cache.close_all()
    assert first.store.closed is True
