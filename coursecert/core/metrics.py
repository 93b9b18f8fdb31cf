from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from threading import Lock
from time import perf_counter
from typing import Deque, Dict


@dataclass
class _Series:
    values: Deque[float]
    lock: Lock


class MetricsCollector:
    """In-memory, best-effort metrics collector.

    Tracks named counters (attempts created, feedback committed, conflicts)
    and latency series for scoring and commit.
    """

    def __init__(self, capacity: int = 500) -> None:
        self.capacity = capacity
        self.counters: Dict[str, int] = {}
        self._counter_lock = Lock()
        self.histograms: Dict[str, _Series] = {}
        self._hists_lock = Lock()

    def increment_counter(self, name: str, value: int = 1) -> None:
        """Increment a named counter by value (default 1)."""
        with self._counter_lock:
            self.counters[name] = self.counters.get(name, 0) + int(value)

    def record_histogram(self, name: str, value: float) -> None:
        """Append a value to a named histogram series."""
        with self._hists_lock:
            series = self.histograms.get(name)
            if series is None:
                series = _Series(deque(maxlen=self.capacity), Lock())
                self.histograms[name] = series
        with series.lock:
            series.values.append(float(value))

    def _percentile(self, series: _Series, p: float) -> float:
        with series.lock:
            values = list(series.values)
        if not values:
            return 0.0
        values.sort()
        k = int(round((p / 100.0) * (len(values) - 1)))
        return float(values[k])

    def snapshot(self) -> dict:
        with self._counter_lock:
            counters = dict(self.counters)
        with self._hists_lock:
            names = list(self.histograms.items())
        return {
            "counters": counters,
            "p95_ms": {name: round(self._percentile(series, 95), 2) for name, series in names},
        }

    def reset(self) -> None:
        with self._counter_lock:
            self.counters.clear()
        with self._hists_lock:
            self.histograms.clear()


# Singleton instance
collector = MetricsCollector()


class Timer:
    """Context manager to time an operation and feed metrics."""

    def __init__(self) -> None:
        self._start = 0.0
        self.ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.ms = max(0.0, (perf_counter() - self._start) * 1000.0)
        # Caller decides which series to update.
        return None
