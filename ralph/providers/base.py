"""Contracts for the collaborators the iteration loop drives."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from ralph.session.models import (
    CostBreakdown,
    IterationOutcome,
    TokenUsage,
    ToolEvent,
    UsageSnapshot,
)


def _ignore(_value: object) -> None:
    return None


@dataclass(frozen=True)
class IterationSinks:
    """Callbacks a task runner pushes live progress into.

    All sinks are fire-and-forget and may be called from any thread.
    """

    tool_event: Callable[[ToolEvent], None] = _ignore
    status: Callable[[str], None] = _ignore
    task: Callable[[str], None] = _ignore
    model_breakdown: Callable[[dict[str, int]], None] = _ignore
    model: Callable[[str], None] = _ignore


class TaskRunner(Protocol):
    """Runs one unit of work.

    Must resolve exactly once per call and must not raise: failures come
    back as ``success=False`` with ``error`` set.
    """

    async def run(self, iteration: int, sinks: IterationSinks) -> IterationOutcome: ...


class CostModel(Protocol):
    def compute_cost(self, usage: TokenUsage, model: str) -> CostBreakdown: ...

    def compute_cache_savings(self, usage: TokenUsage, model: str) -> float: ...


class UsageProvider(Protocol):
    """Source of subscription usage snapshots; ``None`` means unknown."""

    async def refresh(self) -> UsageSnapshot | None: ...
