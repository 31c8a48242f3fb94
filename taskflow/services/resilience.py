from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, TypeVar

from taskflow.core.config import get_settings
from taskflow.core.errors import BackendAuthError, BackendUnavailableError
from taskflow.services.telemetry import record_backend_call


logger = logging.getLogger(__name__)

T = TypeVar("T")

TransientException = (TimeoutError, OSError, BackendUnavailableError)


def is_transient(exc: BaseException) -> bool:
    # Network/timeout failures; the resolver moves on to its next step for these.
    if isinstance(exc, TransientException):
        return True
    status = getattr(exc, "status_code", None)
    return isinstance(status, int) and status >= 500


def is_liveness_error(exc: BaseException) -> bool:
    # Errors that mean a cached handle is broken and must be recreated rather than reused.
    return is_transient(exc) or isinstance(exc, BackendAuthError)


def default_timeout_ms() -> int:
    return max(1, int(get_settings().backend_call_timeout_ms))


async def call_with_timeout(
    func: Callable[[], Awaitable[T]],
    *,
    backend: str,
    operation: str,
    timeout_ms: int | None = None,
) -> T:
    # Timeouts surface as BackendUnavailableError; retrying is left to the caller.
    timeout_s = (timeout_ms if timeout_ms is not None else default_timeout_ms()) / 1000.0
    start = time.monotonic()
    success = False
    try:
        result = await asyncio.wait_for(func(), timeout=timeout_s)
        success = True
        return result
    except asyncio.TimeoutError as exc:
        raise BackendUnavailableError(f"{backend} {operation} timed out after {timeout_s:.3f}s") from exc
    finally:
        record_backend_call(
            backend=backend,
            operation=operation,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=success,
        )
