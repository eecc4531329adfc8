"""
Metrics sinks.

The engine reports counters, gauges and histogram samples through the
MetricsSink protocol. NullMetrics (default) drops everything;
InMemoryMetrics keeps them for tests and the /metrics endpoint.

Metric names:
    jobs.submitted               counter
    jobs.rejected                counter, tag reason
    jobs.dispatched              counter
    jobs.completed               counter, tag status
    jobs.active                  gauge
    jobs.queue_depth             gauge
    jobs.duration_seconds        histogram
    jobs.queue_wait_seconds      histogram
    jobs.timeouts                counter
    jobs.resource_kills          counter
    probe.duration_seconds       histogram
    probe.errors                 counter
"""

import threading
from collections import defaultdict
from typing import Any, Dict, List, Optional, Protocol

Tags = Optional[Dict[str, str]]


class MetricsSink(Protocol):
    def increment(self, name: str, value: float = 1.0, tags: Tags = None) -> None: ...

    def gauge(self, name: str, value: float, tags: Tags = None) -> None: ...

    def histogram(self, name: str, value: float, tags: Tags = None) -> None: ...


class NullMetrics:
    def increment(self, name: str, value: float = 1.0, tags: Tags = None) -> None:
        pass

    def gauge(self, name: str, value: float, tags: Tags = None) -> None:
        pass

    def histogram(self, name: str, value: float, tags: Tags = None) -> None:
        pass


def metric_key(name: str, tags: Tags = None) -> str:
    """'jobs.completed' + {'status': 'failed'} -> 'jobs.completed{status=failed}'"""
    if not tags:
        return name
    rendered = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
    return f"{name}{{{rendered}}}"


class InMemoryMetrics:
    """Thread-safe in-process metrics store."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, float] = defaultdict(float)
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, List[float]] = defaultdict(list)

    def increment(self, name: str, value: float = 1.0, tags: Tags = None) -> None:
        with self._lock:
            self._counters[metric_key(name, tags)] += value

    def gauge(self, name: str, value: float, tags: Tags = None) -> None:
        with self._lock:
            self._gauges[metric_key(name, tags)] = value

    def histogram(self, name: str, value: float, tags: Tags = None) -> None:
        with self._lock:
            self._histograms[metric_key(name, tags)].append(value)

    def counter(self, name: str, tags: Tags = None) -> float:
        with self._lock:
            return self._counters.get(metric_key(name, tags), 0.0)

    def gauge_value(self, name: str, tags: Tags = None) -> Optional[float]:
        with self._lock:
            return self._gauges.get(metric_key(name, tags))

    def samples(self, name: str, tags: Tags = None) -> List[float]:
        with self._lock:
            return list(self._histograms.get(metric_key(name, tags), ()))

    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready view: counters, gauges, histogram summaries."""
        with self._lock:
            histograms = {
                key: _summarize(values) for key, values in self._histograms.items()
            }
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": histograms,
            }


def _summarize(values: List[float]) -> Dict[str, float]:
    ordered = sorted(values)
    count = len(ordered)
    return {
        "count": count,
        "sum": sum(ordered),
        "min": ordered[0],
        "max": ordered[-1],
        "p50": ordered[int(0.5 * (count - 1))],
        "p95": ordered[int(0.95 * (count - 1))],
    }
