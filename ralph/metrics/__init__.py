"""Per-iteration metrics persistence, cost model and reporting."""

from ralph.metrics.models import IterationEvent, SessionSummary
from ralph.metrics.collector import MetricsCollector

__all__ = ["IterationEvent", "SessionSummary", "MetricsCollector"]
