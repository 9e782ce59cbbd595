"""Task runner and usage provider contracts."""

from ralph.providers.base import CostModel, IterationSinks, TaskRunner, UsageProvider

__all__ = ["CostModel", "IterationSinks", "TaskRunner", "UsageProvider"]
