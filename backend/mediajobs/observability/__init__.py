"""
Observability: metrics sinks the engine reports into.
"""

from .metrics import MetricsSink, NullMetrics, InMemoryMetrics, metric_key

__all__ = [
    "MetricsSink",
    "NullMetrics",
    "InMemoryMetrics",
    "metric_key",
]
