from __future__ import annotations

import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class RequestSample:
    ts: float
    path: str
    route_class: str
    status_code: int
    latency_ms: float


_request_samples: Deque[RequestSample] = deque(maxlen=20000)
_counters: dict[str, int] = defaultdict(int)


def classify_route(path: str) -> str:
    # Inbound traffic is customer facing; everything else is dashboard or ops.
    if path.endswith("/messages"):
        return "inbound"
    if path.rstrip("/").endswith("/health"):
        return "ops"
    return "dashboard"


def record_request(*, path: str, route_class: str, status_code: int, latency_ms: float) -> None:
    _request_samples.append(
        RequestSample(
            ts=time.time(),
            path=path,
            route_class=route_class,
            status_code=status_code,
            latency_ms=latency_ms,
        )
    )


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def _window_samples(window_s: int) -> list[RequestSample]:
    cutoff = time.time() - window_s
    return [sample for sample in _request_samples if sample.ts >= cutoff]


def availability(window_s: int) -> float | None:
    # Share of non-5xx requests in the window, as a percentage.
    samples = _window_samples(window_s)
    if not samples:
        return None
    total = len(samples)
    failures = sum(1 for sample in samples if sample.status_code >= 500)
    return ((total - failures) / total) * 100.0


def p95_latency(window_s: int, *, route_class: str | None = None) -> float | None:
    samples = _window_samples(window_s)
    if route_class:
        samples = [sample for sample in samples if sample.route_class == route_class]
    if not samples:
        return None
    latencies = sorted(sample.latency_ms for sample in samples)
    idx = max(0, math.ceil(0.95 * len(latencies)) - 1)
    return latencies[idx]


def reset_telemetry() -> None:
    # Tests only.
    _request_samples.clear()
    _counters.clear()
