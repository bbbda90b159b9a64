"""
Observability: stage tracing and run metrics.

Kept strictly outside the RecommendationReport: durations and counters
vary between runs, the report must not.

Usage:
    from tunesense.observability import Tracer, AdvisorMetrics

    tracer = Tracer(enabled=True)
    tracer.start_span("run", table="orders")
    ...
    tracer.end_span()

    metrics = AdvisorMetrics()
    metrics.record_run(duration_ms=42.0, recommendations=3, dropped_entries=0)
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)


# =============================================================================
# In-process tracing
# =============================================================================


@dataclass
class TraceSpan:
    """A single span in a trace tree."""

    name: str
    start_time: float
    end_time: float | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    children: list["TraceSpan"] = field(default_factory=list)

    @property
    def duration_ms(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time) * 1000

    def end(self) -> None:
        self.end_time = time.perf_counter()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "duration_ms": self.duration_ms,
            "attributes": self.attributes,
            "children": [c.to_dict() for c in self.children],
        }


class Tracer:
    """
    Span tree for one advisory run.

    Spans are opened and closed by the run's worker thread only; stages
    that execute concurrently are traced as one enclosing span.
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._root: TraceSpan | None = None
        self._stack: list[TraceSpan] = []

    def start_span(self, name: str, **attributes: Any) -> TraceSpan:
        span = TraceSpan(name=name, start_time=time.perf_counter(), attributes=attributes)
        if self.enabled:
            if self._stack:
                self._stack[-1].children.append(span)
            else:
                self._root = span
            self._stack.append(span)
        return span

    def end_span(self) -> None:
        if self.enabled and self._stack:
            self._stack[-1].end()
            self._stack.pop()

    @property
    def current(self) -> str | None:
        """Name of the innermost open span."""
        return self._stack[-1].name if self._stack else None

    def get_trace(self) -> dict[str, Any] | None:
        if self._root:
            return self._root.to_dict()
        return None


# =============================================================================
# Metrics
# =============================================================================


class MetricsExporter(Protocol):
    """Protocol for metrics backends."""

    def record_counter(self, name: str, value: int, labels: dict[str, str]) -> None:
        ...

    def record_histogram(self, name: str, value: float, labels: dict[str, str]) -> None:
        ...


class InMemoryMetricsExporter:
    """In-memory metrics exporter for testing and simple use cases."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {}
        self._histograms: dict[str, list[float]] = {}

    def record_counter(self, name: str, value: int, labels: dict[str, str]) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def record_histogram(self, name: str, value: float, labels: dict[str, str]) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._histograms.setdefault(key, []).append(value)

    def _make_key(self, name: str, labels: dict[str, str]) -> str:
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        return self._counters.get(self._make_key(name, labels or {}), 0)

    def get_histogram(self, name: str, labels: dict[str, str] | None = None) -> list[float]:
        return list(self._histograms.get(self._make_key(name, labels or {}), []))


@dataclass
class AdvisorMetrics:
    """
    Counters for advisory runs, safe to share across concurrent runs.

    Optionally forwards every observation to a MetricsExporter.
    """

    runs_total: int = 0
    timeouts_total: int = 0
    failures_total: int = 0
    recommendations_total: int = 0
    dropped_entries_total: int = 0
    run_durations_ms: list[float] = field(default_factory=list)

    _max_samples: int = 1000
    _exporter: MetricsExporter | None = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_run(self, duration_ms: float, recommendations: int, dropped_entries: int) -> None:
        with self._lock:
            self.runs_total += 1
            self.recommendations_total += recommendations
            self.dropped_entries_total += dropped_entries
            self.run_durations_ms.append(duration_ms)
            if len(self.run_durations_ms) > self._max_samples:
                self.run_durations_ms = self.run_durations_ms[-self._max_samples:]
        if self._exporter is not None:
            self._exporter.record_counter("runs_total", 1, {"outcome": "ok"})
            self._exporter.record_histogram("run_duration_ms", duration_ms, {})
            self._exporter.record_counter("recommendations_total", recommendations, {})
            self._exporter.record_counter("dropped_entries_total", dropped_entries, {})

    def record_timeout(self, table: str) -> None:
        with self._lock:
            self.timeouts_total += 1
        if self._exporter is not None:
            self._exporter.record_counter("runs_total", 1, {"outcome": "timeout"})
        logger.debug("Recorded timeout for %s", table)

    def record_failure(self, table: str) -> None:
        with self._lock:
            self.failures_total += 1
        if self._exporter is not None:
            self._exporter.record_counter("runs_total", 1, {"outcome": "error"})
        logger.debug("Recorded failure for %s", table)

    @property
    def avg_duration_ms(self) -> float:
        if not self.run_durations_ms:
            return 0.0
        return sum(self.run_durations_ms) / len(self.run_durations_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "runs_total": self.runs_total,
            "timeouts_total": self.timeouts_total,
            "failures_total": self.failures_total,
            "recommendations_total": self.recommendations_total,
            "dropped_entries_total": self.dropped_entries_total,
            "avg_duration_ms": self.avg_duration_ms,
        }
