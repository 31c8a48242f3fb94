from __future__ import annotations

import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class BackendCallSample:
    ts: float
    backend: str
    operation: str
    latency_ms: float
    success: bool


_backend_samples: Deque[BackendCallSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)


def record_backend_call(*, backend: str, operation: str, latency_ms: float, success: bool) -> None:
    _backend_samples.append(
        BackendCallSample(
            ts=time.time(),
            backend=backend,
            operation=operation,
            latency_ms=latency_ms,
            success=success,
        )
    )


def increment_counter(name: str, value: int = 1) -> None:
    # Resolver fallbacks, sweeper purges and bulk outcomes feed ops dashboards from here.
    _counters[name] += value


def backend_latency(window_s: int) -> dict[str, dict[str, float | int]]:
    # Aggregate p95/max latency and failure counts per backend in the window.
    cutoff = time.time() - window_s
    latencies: dict[str, list[float]] = defaultdict(list)
    failures: dict[str, int] = defaultdict(int)
    for sample in _backend_samples:
        if sample.ts < cutoff:
            continue
        latencies[sample.backend].append(sample.latency_ms)
        if not sample.success:
            failures[sample.backend] += 1
    result: dict[str, dict[str, float | int]] = {}
    for backend, values in latencies.items():
        values.sort()
        p95_idx = max(0, math.ceil(0.95 * len(values)) - 1)
        result[backend] = {"p95": values[p95_idx], "max": values[-1], "failures": failures[backend]}
    return result


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def reset_telemetry() -> None:
    # Tests reset counters so assertions do not depend on execution order.
    _counters.clear()
    _backend_samples.clear()
