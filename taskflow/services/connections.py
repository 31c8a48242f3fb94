from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from taskflow.providers.backends.base import BackendHandle
from taskflow.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

HandleFactory = Callable[[], Awaitable[BackendHandle]]


class ConnectionCache:
    # Single-flight per tenant key; failed creations are never cached.
    def __init__(self, *, retire_grace_s: float = 30.0) -> None:
        self._entries: dict[str, BackendHandle] = {}
        self._inflight: dict[str, asyncio.Future[BackendHandle]] = {}
        # Invalidated handles stay open for in-flight callers until the grace period ends.
        self._retire_grace_s = retire_grace_s
        self._retired: list[BackendHandle] = []
        self._closers: set[asyncio.Task[None]] = set()
        self._created = 0
        self._failed = 0
        self._invalidated = 0

    def peek(self, tenant_key: str) -> BackendHandle | None:
        return self._entries.get(tenant_key)

    async def get_or_create(self, tenant_key: str, factory: HandleFactory) -> BackendHandle:
        cached = self._entries.get(tenant_key)
        if cached is not None:
            return cached
        pending = self._inflight.get(tenant_key)
        if pending is not None:
            # Shield so one cancelled waiter cannot cancel creation for the others.
            return await asyncio.shield(pending)

        pending = asyncio.get_running_loop().create_future()
        self._inflight[tenant_key] = pending
        try:
            handle = await factory()
        except asyncio.CancelledError:
            self._inflight.pop(tenant_key, None)
            pending.cancel()
            raise
        except Exception as exc:
            self._inflight.pop(tenant_key, None)
            self._failed += 1
            increment_counter("connection_cache.create_failed")
            pending.set_exception(exc)
            # Mark retrieved; the creator re-raises it below.
            pending.exception()
            logger.warning("connection_create_failed tenant=%s error=%s", tenant_key, type(exc).__name__)
            raise
        self._entries[tenant_key] = handle
        self._inflight.pop(tenant_key, None)
        self._created += 1
        increment_counter("connection_cache.created")
        pending.set_result(handle)
        logger.info("connection_cached tenant=%s engine=%s", tenant_key, handle.engine)
        return handle

    def invalidate(self, tenant_key: str, handle: BackendHandle | None = None) -> bool:
        # Passing the handle avoids evicting a replacement another caller already created.
        current = self._entries.get(tenant_key)
        if current is None or (handle is not None and current is not handle):
            return False
        del self._entries[tenant_key]
        self._retired.append(current)
        self._invalidated += 1
        increment_counter("connection_cache.invalidated")
        logger.info("connection_invalidated tenant=%s", tenant_key)
        self._schedule_close(current)
        return True

    def _schedule_close(self, handle: BackendHandle) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to close it on; close_all picks it up at shutdown.
            return
        task = loop.create_task(self._close_after_grace(handle))
        self._closers.add(task)
        task.add_done_callback(self._closers.discard)

    async def _close_after_grace(self, handle: BackendHandle) -> None:
        await asyncio.sleep(self._retire_grace_s)
        if not any(retired is handle for retired in self._retired):
            return
        self._retired = [retired for retired in self._retired if retired is not handle]
        await self._close(handle)

    async def _close(self, handle: BackendHandle) -> None:
        try:
            await handle.store.close()
        except Exception:  # noqa: BLE001 - a failed close must not stop the others
            logger.exception("connection_close_failed tenant=%s", handle.tenant_key)
        else:
            increment_counter("connection_cache.closed")

    async def close_all(self) -> None:
        for task in list(self._closers):
            task.cancel()
        if self._closers:
            await asyncio.gather(*self._closers, return_exceptions=True)
        self._closers.clear()
        handles = list(self._entries.values()) + self._retired
        self._entries.clear()
        self._retired = []
        for handle in handles:
            await self._close(handle)

    def stats(self) -> dict[str, Any]:
        return {
            "entries": len(self._entries),
            "in_flight": len(self._inflight),
            "retired": len(self._retired),
            "retire_grace_s": self._retire_grace_s,
            "created": self._created,
            "failed": self._failed,
            "invalidated": self._invalidated,
            "tenants": sorted(self._entries),
        }
