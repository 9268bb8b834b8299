"""
Monitoring Service — runtime health from per-interaction samples.

The runtime records one ``PerformanceSample`` per completed request. From the
rolling window of samples the service derives:

  health()     the latest sample checked against four fixed thresholds
  history()    samples inside a time window
  aggregate()  window averages
  trend()      first half vs second half of the window

Samples live only in memory, in a capped deque (oldest evicted first).
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Any, Literal, Optional, Union

import structlog
from pydantic import BaseModel, Field

from aria.config import MonitoringConfig

logger = structlog.get_logger(__name__)

# Relative change that counts as a real move in trend()
TREND_THRESHOLD = 0.1
# Absorbs float rounding so a change of exactly TREND_THRESHOLD still counts
_TREND_TOLERANCE = 1e-9


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class PerformanceSample(BaseModel):
    """One request's worth of performance figures."""

    timestamp: float = Field(default_factory=time.time)
    response_time_ms: float = 0.0
    memory_usage_ratio: float = 0.0
    cpu_usage_ratio: float = 0.0
    success_rate: float = 1.0
    error_rate: float = 0.0
    active_connections: int = 0
    queue_size: int = 0


class HealthThresholds(BaseModel):
    """A check passes when the sample value is strictly below its threshold."""

    response_time_ms: float = 5000.0
    memory_usage: float = 0.8
    cpu_usage: float = 0.7
    error_rate: float = 0.1


class HealthChecks(BaseModel):
    memory: bool = True
    cpu: bool = True
    response_time: bool = True
    error_rate: bool = True

    @property
    def failed(self) -> list[str]:
        return [name for name, passed in self.model_dump().items() if not passed]


class HealthStatus(BaseModel):
    """Derived on demand; never stored."""

    status: Literal["healthy", "degraded", "unhealthy"] = "healthy"
    checks: HealthChecks = Field(default_factory=HealthChecks)
    metrics: Optional[PerformanceSample] = None
    recommendations: list[str] = Field(default_factory=list)


class AggregatedMetrics(BaseModel):
    avg_response_time_ms: float = 0.0
    avg_memory_usage: float = 0.0
    avg_cpu_usage: float = 0.0
    avg_error_rate: float = 0.0
    total_requests: int = 0


Trend = Literal["improving", "stable", "degrading"]

_RECOMMENDATIONS = {
    "memory": "High memory usage detected. Consider clearing cache or optimizing memory usage.",
    "cpu": "High CPU usage detected. Consider optimizing algorithms or reducing concurrent operations.",
    "response_time": "Slow response times detected. Consider optimizing code or increasing resources.",
    "error_rate": "High error rate detected. Review error logs and improve error handling.",
}
_ALL_CLEAR = "System is performing well. Continue monitoring."


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class MonitoringService:
    """Rolling sample window plus the health, aggregate and trend derivations."""

    def __init__(self, config: Optional[MonitoringConfig] = None) -> None:
        self._config = config or MonitoringConfig()
        self._samples: deque[PerformanceSample] = deque(maxlen=self._config.window_size)
        self._lock = threading.Lock()
        self._thresholds = HealthThresholds(
            response_time_ms=self._config.response_time_ms,
            memory_usage=self._config.memory_usage,
            cpu_usage=self._config.cpu_usage,
            error_rate=self._config.error_rate,
        )
        logger.info(
            "monitoring.initialized",
            window_size=self._config.window_size,
            thresholds=self._thresholds.model_dump(),
        )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def record(self, sample: Union[PerformanceSample, dict[str, Any]]) -> PerformanceSample:
        if not isinstance(sample, PerformanceSample):
            sample = PerformanceSample.model_validate(sample)
        with self._lock:
            self._samples.append(sample)
        logger.debug(
            "monitoring.recorded",
            response_time_ms=round(sample.response_time_ms, 1),
            error_rate=round(sample.error_rate, 3),
        )
        return sample

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()
        logger.info("monitoring.cleared")

    @property
    def sample_count(self) -> int:
        with self._lock:
            return len(self._samples)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @property
    def thresholds(self) -> HealthThresholds:
        return self._thresholds.model_copy()

    def update_thresholds(self, **changes: float) -> HealthThresholds:
        """Change any subset of the four thresholds."""
        unknown = set(changes) - set(HealthThresholds.model_fields)
        if unknown:
            raise ValueError(f"Unknown threshold(s): {', '.join(sorted(unknown))}")
        self._thresholds = self._thresholds.model_copy(update=changes)
        logger.info("monitoring.thresholds_updated", **self._thresholds.model_dump())
        return self.thresholds

    def health(self) -> HealthStatus:
        with self._lock:
            latest = self._samples[-1] if self._samples else None

        if latest is None:
            return HealthStatus()

        t = self._thresholds
        checks = HealthChecks(
            memory=latest.memory_usage_ratio < t.memory_usage,
            cpu=latest.cpu_usage_ratio < t.cpu_usage,
            response_time=latest.response_time_ms < t.response_time_ms,
            error_rate=latest.error_rate < t.error_rate,
        )
        failed = checks.failed
        if not failed:
            status = "healthy"
        elif len(failed) <= 2:
            status = "degraded"
        else:
            status = "unhealthy"

        recommendations = [_RECOMMENDATIONS[name] for name in failed] or [_ALL_CLEAR]
        return HealthStatus(
            status=status,
            checks=checks,
            metrics=latest,
            recommendations=recommendations,
        )

    # ------------------------------------------------------------------
    # Windowed views
    # ------------------------------------------------------------------

    def _window(self, window_minutes: Optional[float]) -> float:
        minutes = self._config.default_window_minutes if window_minutes is None else window_minutes
        return time.time() - minutes * 60.0

    def history(self, window_minutes: Optional[float] = None) -> list[PerformanceSample]:
        cutoff = self._window(window_minutes)
        with self._lock:
            return [s for s in self._samples if s.timestamp >= cutoff]

    def aggregate(self, window_minutes: Optional[float] = None) -> AggregatedMetrics:
        samples = self.history(window_minutes)
        if not samples:
            return AggregatedMetrics()
        count = len(samples)
        return AggregatedMetrics(
            avg_response_time_ms=sum(s.response_time_ms for s in samples) / count,
            avg_memory_usage=sum(s.memory_usage_ratio for s in samples) / count,
            avg_cpu_usage=sum(s.cpu_usage_ratio for s in samples) / count,
            avg_error_rate=sum(s.error_rate for s in samples) / count,
            total_requests=count,
        )

    def trend(self, window_minutes: Optional[float] = None) -> Trend:
        """
        Compare the two halves of the window (split by index).

        improving: response time AND error rate both at least 10% lower
        degrading: response time OR error rate at least 10% higher
        stable:    anything else, including fewer than two samples
        """
        samples = self.history(window_minutes)
        if len(samples) < 2:
            return "stable"

        mid = len(samples) // 2
        first, second = samples[:mid], samples[mid:]
        first_rt = sum(s.response_time_ms for s in first) / len(first)
        second_rt = sum(s.response_time_ms for s in second) / len(second)
        first_err = sum(s.error_rate for s in first) / len(first)
        second_err = sum(s.error_rate for s in second) / len(second)

        if _improved(first_rt, second_rt) and _improved(first_err, second_err):
            return "improving"
        if _worsened(first_rt, second_rt) or _worsened(first_err, second_err):
            return "degrading"
        return "stable"

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export(self) -> dict[str, Any]:
        with self._lock:
            samples = [s.model_dump(mode="json") for s in self._samples]
        return {
            "metrics": samples,
            "thresholds": self._thresholds.model_dump(),
            "exported_at": time.time(),
        }


def _improved(before: float, after: float) -> bool:
    return before > 0 and (before - after) >= TREND_THRESHOLD * before - _TREND_TOLERANCE


def _worsened(before: float, after: float) -> bool:
    return after > before and (after - before) >= TREND_THRESHOLD * before - _TREND_TOLERANCE
