"""
streamrun metrics — in-process metrics collector.

No external dependencies. Prometheus export can wrap this later.

Recorded by the orchestration core:
    run.started / run.finished{status}        counters
    step.finished{finish_reason}              counter
    tool.executed{tool,status}                counter
    run.duration_ms, run.ttft_ms              histograms
    step.duration_ms, tool.duration_ms        histograms

Usage:
    from streamrun.core.metrics import metrics

    metrics.inc("run.started")
    metrics.observe("tool.duration_ms", 12.5, labels={"tool": "search"})
    snapshot = metrics.snapshot()
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict


class MetricsCollector:
    """In-process metrics collector — counters and histograms."""

    # Rolling window size for histograms
    HISTOGRAM_MAX_SAMPLES = 1000

    _instance: "MetricsCollector | None" = None

    @classmethod
    def get(cls) -> "MetricsCollector":
        """Return the process-wide singleton."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = defaultdict(int)
        self._histograms: dict[str, list[float]] = defaultdict(list)
        self._started_at: float = time.time()

    def inc(self, name: str, value: int = 1, labels: dict | None = None) -> None:
        """Increment a counter."""
        with self._lock:
            self._counters[self._key(name, labels)] += value

    def observe(self, name: str, value: float, labels: dict | None = None) -> None:
        """Record a single observation (e.g. latency in ms).

        Oldest sample is dropped when the window is full.
        """
        key = self._key(name, labels)
        with self._lock:
            samples = self._histograms[key]
            samples.append(value)
            if len(samples) > self.HISTOGRAM_MAX_SAMPLES:
                samples.pop(0)

    def counter(self, name: str, labels: dict | None = None) -> int:
        """Current value of a counter (0 if never incremented)."""
        return self._counters.get(self._key(name, labels), 0)

    def percentile(
        self, name: str, p: float, labels: dict | None = None
    ) -> float | None:
        """Compute a percentile (0-100) over recorded observations.

        When labels are None, aggregates across all label variants of the
        metric. Returns None if no samples exist yet.
        """
        if labels is not None:
            samples = list(self._histograms.get(self._key(name, labels), []))
        else:
            samples = []
            prefix = name + "{"
            for key, values in list(self._histograms.items()):
                if key == name or key.startswith(prefix):
                    samples.extend(values)
        if not samples:
            return None
        ordered = sorted(samples)
        idx = min(int(len(ordered) * p / 100), len(ordered) - 1)
        return ordered[idx]

    def snapshot(self) -> dict:
        """Full metrics snapshot — counters and histogram summaries."""
        with self._lock:
            counters = dict(self._counters)
            histogram_items = [(k, sorted(v)) for k, v in self._histograms.items()]

        histograms: dict[str, dict] = {}
        for key, ordered in histogram_items:
            if not ordered:
                continue
            n = len(ordered)
            histograms[key] = {
                "count": n,
                "min": ordered[0],
                "max": ordered[-1],
                "p50": ordered[n // 2],
                "p95": ordered[min(int(n * 0.95), n - 1)],
                "p99": ordered[min(int(n * 0.99), n - 1)],
            }

        return {
            "uptime_seconds": round(time.time() - self._started_at, 1),
            "counters": counters,
            "histograms": histograms,
        }

    def reset(self) -> None:
        """Drop all recorded values. Used by tests."""
        with self._lock:
            self._counters.clear()
            self._histograms.clear()

    def _key(self, name: str, labels: dict | None) -> str:
        """Build a metric key with optional label suffix.

        Example: "tool.executed{status=ok,tool=search}"
        """
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# Process-wide singleton
metrics = MetricsCollector.get()
