"""
Conduit Metrics — in-process counters and histograms.

No external dependencies. Prometheus export can wrap this later.

Usage:
    from conduit.core.metrics import metrics

    metrics.inc("tool.attempts", labels={"tool": "read_document"})
    metrics.observe("tool.duration_ms", 12.5, labels={"tool": "read_document"})

    snapshot = metrics.snapshot()  # -> dict for JSON response
"""

from __future__ import annotations

import time
from collections import defaultdict


class MetricsCollector:
    """Counters plus rolling-window histograms, keyed by name and labels."""

    HISTOGRAM_MAX_SAMPLES = 1000

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._histograms: dict[str, list[float]] = defaultdict(list)
        self._started_at: float = time.time()

    def inc(self, name: str, value: int = 1, labels: dict | None = None) -> None:
        """Increment a counter."""
        self._counters[self._key(name, labels)] += value

    def observe(self, name: str, value: float, labels: dict | None = None) -> None:
        """Record a single observation; the oldest sample drops off a full window."""
        samples = self._histograms[self._key(name, labels)]
        samples.append(value)
        if len(samples) > self.HISTOGRAM_MAX_SAMPLES:
            samples.pop(0)

    def counter(self, name: str, labels: dict | None = None) -> int:
        return self._counters.get(self._key(name, labels), 0)

    def snapshot(self) -> dict:
        """Counters and histogram summaries (count/min/max/p50/p95)."""
        histograms: dict[str, dict] = {}
        for key, samples in self._histograms.items():
            if not samples:
                continue
            ordered = sorted(samples)
            n = len(ordered)
            histograms[key] = {
                "count": n,
                "min": ordered[0],
                "max": ordered[-1],
                "p50": ordered[n // 2],
                "p95": ordered[min(int(n * 0.95), n - 1)],
            }
        return {
            "uptime_seconds": round(time.time() - self._started_at, 1),
            "counters": dict(self._counters),
            "histograms": histograms,
        }

    def reset(self) -> None:
        self._counters.clear()
        self._histograms.clear()

    def _key(self, name: str, labels: dict | None) -> str:
        """Example: "tool.attempts{tool=read_document}"."""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# Shared collector, imported directly by callers
metrics = MetricsCollector()
