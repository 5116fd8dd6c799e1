"""Observability module for in-process metrics."""

from hybridrec.observability.metrics import MetricsSink, percentile

__all__ = [
    "MetricsSink",
    "percentile",
]
