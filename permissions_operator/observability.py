"""
Lightweight reconcile metrics (no external dependencies).

- pass counts by outcome, bindings created/deleted
- latency summary over a recent window
- snapshot for the /metrics endpoint
"""

from __future__ import annotations

import time
from collections import Counter, deque
from dataclasses import dataclass
from threading import Lock
from typing import Any, Deque, Dict


@dataclass(frozen=True)
class LatencySummary:
    count: int
    avg_ms: float
    p95_ms: float
    max_ms: float


class ReconcileMetrics:
    def __init__(self, window_size: int = 1000) -> None:
        self.started_at = time.time()
        self._lock = Lock()
        self._passes = 0
        self._outcomes: Counter[str] = Counter()
        self._bindings_created = 0
        self._bindings_deleted = 0
        self._last_pass_at: float | None = None
        self._latencies_ms: Deque[float] = deque(maxlen=window_size)

    def observe(self, outcome: str, duration_ms: float, created: int = 0, deleted: int = 0) -> None:
        with self._lock:
            self._passes += 1
            self._outcomes[outcome] += 1
            self._bindings_created += created
            self._bindings_deleted += deleted
            self._last_pass_at = time.time()
            self._latencies_ms.append(float(duration_ms))

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            latencies = list(self._latencies_ms)
            passes = self._passes
            outcomes = dict(self._outcomes)
            created = self._bindings_created
            deleted = self._bindings_deleted
            last_pass_at = self._last_pass_at

        summary = self._summarize_latencies(latencies)
        return {
            "uptime_seconds": max(0, int(time.time() - self.started_at)),
            "reconcile_passes": passes,
            "outcomes": outcomes,
            "bindings_created": created,
            "bindings_deleted": deleted,
            "last_pass_at": last_pass_at,
            "latency_ms": {
                "count": summary.count,
                "avg": summary.avg_ms,
                "p95": summary.p95_ms,
                "max": summary.max_ms,
            },
        }

    @staticmethod
    def _summarize_latencies(latencies: list[float]) -> LatencySummary:
        if not latencies:
            return LatencySummary(count=0, avg_ms=0.0, p95_ms=0.0, max_ms=0.0)
        latencies_sorted = sorted(latencies)
        count = len(latencies_sorted)
        avg = sum(latencies_sorted) / count
        p95_idx = max(0, min(count - 1, int(count * 0.95) - 1))
        p95 = latencies_sorted[p95_idx]
        return LatencySummary(count=count, avg_ms=round(avg, 2), p95_ms=round(p95, 2), max_ms=round(latencies_sorted[-1], 2))


reconcile_metrics = ReconcileMetrics()
