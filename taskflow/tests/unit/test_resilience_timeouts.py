from __future__ import annotations

import asyncio

import pytest

from taskflow.core.errors import BackendAuthError, BackendError, BackendUnavailableError, NotFoundError
from taskflow.services.resilience import call_with_timeout, is_liveness_error, is_transient
from taskflow.services.telemetry import backend_latency


@pytest.mark.asyncio
async def test_slow_backend_call_becomes_unavailable() -> None:
    async def slow() -> str:
        await asyncio.sleep(1)
        return "late"

    with pytest.raises(BackendUnavailableError) as excinfo:
        await call_with_timeout(slow, backend="org:acme", operation="get", timeout_ms=10)

    assert "timed out" in str(excinfo.value)
    assert backend_latency(60)["org:acme"]["failures"] == 1


@pytest.mark.asyncio
async def test_successful_call_is_recorded() -> None:
    async def fast() -> int:
        return 42

    assert await call_with_timeout(fast, backend="shared", operation="find", timeout_ms=1000) == 42
    stats = backend_latency(60)["shared"]
    assert stats["failures"] == 0
    assert stats["max"] >= 0


@pytest.mark.asyncio
async def test_backend_errors_pass_through_unchanged() -> None:
    async def refused() -> None:
        raise BackendAuthError("bad credentials")

    with pytest.raises(BackendAuthError):
        await call_with_timeout(refused, backend="org:acme", operation="ping", timeout_ms=1000)


def test_error_classification() -> None:
    assert is_transient(TimeoutError())
    assert is_transient(ConnectionResetError())
    assert is_transient(BackendUnavailableError("down"))
    assert not is_transient(BackendError("bad query"))
    assert not is_transient(NotFoundError("task", "T1"))
    assert is_liveness_error(BackendAuthError("expired token"))
    assert not is_liveness_error(BackendError("bad query"))
