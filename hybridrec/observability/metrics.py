"""In-process metrics sink: counters, gauges and timers.

Timers keep a bounded window of recent durations and report p50/p90 with
the nearest-rank method.
"""

import threading
from collections import deque

from hybridrec.logging import get_logger

logger = get_logger(__name__)

TIMER_WINDOW = 1000


def percentile(values: list[float], p: float) -> float:
    """Compute the p-th percentile (nearest rank) of a list of values.

    Args:
        values: Numeric values, may be empty.
        p: Percentile in range [0, 100].

    Returns:
        The percentile value, 0.0 for an empty list.
    """
    if not values:
        return 0.0
    sorted_vals = sorted(values)
    k = max(0, min(int(len(sorted_vals) * p / 100.0 + 0.5) - 1, len(sorted_vals) - 1))
    return sorted_vals[k]


class MetricsSink:
    """Thread-safe metrics registry shared by the engine and the pipeline."""

    def __init__(self, timer_window: int = TIMER_WINDOW) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, float] = {}
        self._gauges: dict[str, float] = {}
        self._timers: dict[str, deque[float]] = {}
        self._timer_window = timer_window

    def increment(self, name: str, amount: float = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + amount

    def gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = value

    def timing(self, name: str, seconds: float) -> None:
        with self._lock:
            window = self._timers.get(name)
            if window is None:
                window = self._timers[name] = deque(maxlen=self._timer_window)
            window.append(seconds)

    def counter(self, name: str) -> float:
        with self._lock:
            return self._counters.get(name, 0)

    def snapshot(self) -> dict[str, dict]:
        """Copy of all metrics, timers summarized as count/p50/p90/max."""
        with self._lock:
            counters = dict(self._counters)
            gauges = dict(self._gauges)
            timers = {name: list(values) for name, values in self._timers.items()}

        return {
            "counters": counters,
            "gauges": gauges,
            "timers": {
                name: {
                    "count": len(values),
                    "p50": round(percentile(values, 50), 6),
                    "p90": round(percentile(values, 90), 6),
                    "max": round(max(values), 6) if values else 0.0,
                }
                for name, values in timers.items()
            },
        }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._timers.clear()
        logger.info("Metrics reset")
