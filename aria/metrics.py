"""
Lightweight metrics collection for one Aria runtime.

Tracks operational counters, gauges and latency histograms without requiring
external dependencies like Prometheus or StatsD. Each ``AgentRuntime`` owns
its own registry, so independent agents in one process never share totals.

Usage:
    metrics = MetricsRegistry()
    metrics.inc("interactions_total")
    metrics.observe("response_ms", 123.0)
    snapshot = metrics.snapshot()
"""

from __future__ import annotations

import threading
import time
from typing import Any


class _Histogram:
    """Minimal histogram: tracks count, sum, min, max."""

    __slots__ = ("count", "total", "min_val", "max_val")

    def __init__(self) -> None:
        self.count = 0
        self.total = 0.0
        self.min_val = float("inf")
        self.max_val = 0.0

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        if value < self.min_val:
            self.min_val = value
        if value > self.max_val:
            self.max_val = value

    @property
    def avg(self) -> float:
        return self.total / self.count if self.count else 0.0

    def snapshot(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "sum": round(self.total, 4),
            "avg": round(self.avg, 4),
            "min": round(self.min_val, 4) if self.count else 0.0,
            "max": round(self.max_val, 4) if self.count else 0.0,
        }

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> "_Histogram":
        hist = cls()
        hist.count = int(data.get("count", 0))
        hist.total = float(data.get("sum", 0.0))
        if hist.count:
            hist.min_val = float(data.get("min", 0.0))
            hist.max_val = float(data.get("max", 0.0))
        return hist


class MetricsRegistry:
    """Thread-safe in-process metrics registry."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {}
        self._gauges: dict[str, float] = {}
        self._histograms: dict[str, _Histogram] = {}
        self._start_time = time.monotonic()

    # -- Counters --

    def inc(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    # -- Gauges --

    def set_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = value

    def add_gauge(self, name: str, delta: float) -> float:
        with self._lock:
            value = self._gauges.get(name, 0.0) + delta
            self._gauges[name] = value
            return value

    def gauge(self, name: str) -> float:
        with self._lock:
            return self._gauges.get(name, 0.0)

    # -- Histograms (latency tracking) --

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            if name not in self._histograms:
                self._histograms[name] = _Histogram()
            self._histograms[name].observe(value)

    def average(self, name: str) -> float:
        with self._lock:
            hist = self._histograms.get(name)
            return hist.avg if hist else 0.0

    # -- Export --

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "uptime_seconds": round(time.monotonic() - self._start_time, 1),
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": {
                    k: v.snapshot() for k, v in self._histograms.items()
                },
            }

    def restore(self, snapshot: dict[str, Any]) -> None:
        """Replace all values with those in a ``snapshot()`` dict."""
        counters = {str(k): int(v) for k, v in snapshot.get("counters", {}).items()}
        gauges = {str(k): float(v) for k, v in snapshot.get("gauges", {}).items()}
        histograms = {
            str(k): _Histogram.from_snapshot(v)
            for k, v in snapshot.get("histograms", {}).items()
        }
        with self._lock:
            self._counters = counters
            self._gauges = gauges
            self._histograms = histograms
