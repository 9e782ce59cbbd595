from __future__ import annotations

from collections.abc import Callable

import pytest

from ralph.providers.base import IterationSinks
from ralph.session.models import IterationOutcome, ToolEvent, UsageSnapshot, UsageWindow


def passed(task: str = "Do the thing", model: str = "opus", **kwargs) -> IterationOutcome:
    fields = {
        "operation_count": 3,
        "duration_sec": 30,
        "input_tokens": 1000,
        "output_tokens": 500,
        "cache_read_tokens": 0,
        "cache_write_tokens": 0,
    }
    fields.update(kwargs)
    return IterationOutcome(success=True, model=model, task=task, validation="pass", **fields)


def failed(task: str = "Broken thing", model: str = "opus", **kwargs) -> IterationOutcome:
    fields = {"operation_count": 1, "duration_sec": 10, "error": "tests failed"}
    fields.update(kwargs)
    return IterationOutcome(success=False, model=model, task=task, validation="fail", **fields)


def snapshot(five_hour: float, seven_day: float = 40.0) -> UsageSnapshot:
    return UsageSnapshot(five_hour=UsageWindow(five_hour), seven_day=UsageWindow(seven_day))


class FakeRunner:
    """Returns scripted outcomes; an exception in the script is raised instead."""

    def __init__(
        self,
        outcomes: list[IterationOutcome | Exception],
        *,
        events: dict[int, list[ToolEvent]] | None = None,
        on_run: Callable[[int], None] | None = None,
    ) -> None:
        self.outcomes = list(outcomes)
        self.events = events or {}
        self.on_run = on_run
        self.calls: list[int] = []

    async def run(self, iteration: int, sinks: IterationSinks) -> IterationOutcome:
        self.calls.append(iteration)
        sinks.status(f"working on {iteration}")
        for event in self.events.get(iteration, []):
            sinks.tool_event(event)
        if self.on_run is not None:
            self.on_run(iteration)
        outcome = self.outcomes[iteration - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeUsageProvider:
    def __init__(self, snapshots: list[UsageSnapshot | None]) -> None:
        self.snapshots = list(snapshots)
        self.calls = 0

    async def refresh(self) -> UsageSnapshot | None:
        self.calls += 1
        if not self.snapshots:
            return None
        return self.snapshots.pop(0)

    async def close(self) -> None:
        return None


class FakeSleep:
    """Records requested delays instead of sleeping; runs ``on_tick`` per call."""

    def __init__(self, on_tick: Callable[[int], None] | None = None) -> None:
        self.delays: list[float] = []
        self.on_tick = on_tick

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.on_tick is not None:
            self.on_tick(len(self.delays))


class FakeRecorder:
    def __init__(self) -> None:
        self.iterations: list = []
        self.sessions: list = []

    def record_iteration(self, event) -> None:
        self.iterations.append(event)

    def record_session(self, summary) -> None:
        self.sessions.append(summary)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()
