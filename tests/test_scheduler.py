from __future__ import annotations

import pytest

from conftest import (
    FakeRecorder,
    FakeRunner,
    FakeSleep,
    FakeUsageProvider,
    failed,
    passed,
    snapshot,
)
from ralph.metrics.cost import compute_cost
from ralph.plan import NextTask
from ralph.session import accumulator
from ralph.session.models import IterationOutcome, Phase, StopReason, ToolEvent
from ralph.session.scheduler import IterationScheduler
from ralph.session.summary import SessionSummaryBuilder


def _scheduler(runner, fake_sleep, **kwargs) -> IterationScheduler:
    kwargs.setdefault("summary_builder", SessionSummaryBuilder(completion_messages=False))
    return IterationScheduler(runner, sleep=fake_sleep, **kwargs)


@pytest.mark.asyncio
async def test_runs_until_budget_exhausted(fake_sleep: FakeSleep) -> None:
    runner = FakeRunner([passed("a"), passed("b"), passed("c")])
    scheduler = _scheduler(runner, fake_sleep, max_iterations=3, pause_ms=2000)

    result = await scheduler.run()

    assert runner.calls == [1, 2, 3]
    assert result.phase == Phase.DONE
    assert result.reason == StopReason.BUDGET_EXHAUSTED
    assert result.completed is False
    assert result.success is True
    assert [r.index for r in result.iterations] == [1, 2, 3]
    assert result.stats == accumulator.fold(result.iterations)
    assert result.stats.total_iterations == 3
    assert result.stats.total_operations == 9
    assert "Completed 3 iterations" in result.summary
    # two pauses of two one-second ticks each; none after the last iteration
    assert fake_sleep.delays == [1, 1, 1, 1]


@pytest.mark.asyncio
async def test_failure_stops_the_loop(fake_sleep: FakeSleep) -> None:
    runner = FakeRunner([passed("a"), failed("b"), passed("c"), passed("d"), passed("e")])
    scheduler = _scheduler(runner, fake_sleep, max_iterations=5, pause_ms=0)

    result = await scheduler.run()

    assert runner.calls == [1, 2]
    assert result.phase == Phase.ERROR
    assert result.reason == StopReason.FAILED
    assert result.success is False
    assert result.error == "tests failed"
    assert len(result.iterations) == 2
    assert result.stats.failed_iterations == 1
    assert "Build loop stopped" in result.summary


@pytest.mark.asyncio
async def test_validation_fail_is_a_failure(fake_sleep: FakeSleep) -> None:
    outcome = IterationOutcome(success=True, model="opus", task="x", validation="fail")
    scheduler = _scheduler(FakeRunner([outcome, passed()]), fake_sleep, max_iterations=2)

    result = await scheduler.run()

    assert result.phase == Phase.ERROR
    assert result.error == "Iteration failed"
    assert result.stats.successful_iterations == 0


@pytest.mark.asyncio
async def test_missing_validation_follows_success(fake_sleep: FakeSleep) -> None:
    outcome = IterationOutcome(success=True, model="opus", exit_signal=True)
    result = await _scheduler(FakeRunner([outcome]), fake_sleep, max_iterations=3).run()

    record = result.iterations[0]
    assert record.validation == "pass"
    assert record.task_description == "Unknown task"
    assert result.phase == Phase.DONE


@pytest.mark.asyncio
async def test_exit_signal_completes_early(fake_sleep: FakeSleep) -> None:
    runner = FakeRunner([passed("only", exit_signal=True), passed()])
    scheduler = _scheduler(runner, fake_sleep, max_iterations=10)

    result = await scheduler.run()

    assert runner.calls == [1]
    assert result.reason == StopReason.EXIT_SIGNAL
    assert result.completed is True
    assert fake_sleep.delays == []
    assert "Build complete!" in result.summary


@pytest.mark.asyncio
async def test_cancel_during_pause_stops_before_next_iteration() -> None:
    runner = FakeRunner([passed("a"), passed("b"), passed("c")])
    holder: dict[str, IterationScheduler] = {}
    sleep = FakeSleep(on_tick=lambda n: holder["s"].request_cancel())
    scheduler = _scheduler(runner, sleep, max_iterations=3, pause_ms=5000)
    holder["s"] = scheduler

    result = await scheduler.run()

    assert runner.calls == [1]
    assert sleep.delays == [1]
    assert result.phase == Phase.DONE
    assert result.reason == StopReason.CANCELLED
    assert len(result.iterations) == 1
    assert "Stopped after 1 iterations" in result.summary
    assert scheduler.pause_countdown == 0


@pytest.mark.asyncio
async def test_cancel_while_running_keeps_inflight_record(fake_sleep: FakeSleep) -> None:
    holder: dict[str, IterationScheduler] = {}
    runner = FakeRunner(
        [passed("a"), passed("b")],
        on_run=lambda i: holder["s"].request_cancel(),
    )
    scheduler = _scheduler(runner, fake_sleep, max_iterations=2)
    holder["s"] = scheduler

    result = await scheduler.run()

    assert runner.calls == [1]
    assert [r.task_description for r in result.iterations] == ["a"]
    assert result.reason == StopReason.CANCELLED
    assert fake_sleep.delays == []


@pytest.mark.asyncio
async def test_failure_wins_over_cancel(fake_sleep: FakeSleep) -> None:
    holder: dict[str, IterationScheduler] = {}
    runner = FakeRunner([failed()], on_run=lambda i: holder["s"].request_cancel())
    scheduler = _scheduler(runner, fake_sleep, max_iterations=3)
    holder["s"] = scheduler

    result = await scheduler.run()

    assert result.phase == Phase.ERROR
    assert result.reason == StopReason.FAILED


@pytest.mark.asyncio
async def test_cancel_before_start_runs_nothing(fake_sleep: FakeSleep) -> None:
    runner = FakeRunner([passed()])
    scheduler = _scheduler(runner, fake_sleep, max_iterations=3)
    scheduler.request_cancel()

    result = await scheduler.run()

    assert runner.calls == []
    assert result.iterations == []
    assert result.reason == StopReason.CANCELLED
    assert "✗ Cancelled" in result.summary


@pytest.mark.asyncio
async def test_runner_exception_ends_in_error_without_record(fake_sleep: FakeSleep) -> None:
    runner = FakeRunner([passed("a"), RuntimeError("boom")])
    scheduler = _scheduler(runner, fake_sleep, max_iterations=3, pause_ms=0)

    result = await scheduler.run()

    assert result.phase == Phase.ERROR
    assert result.error == "Unexpected error: RuntimeError"
    assert len(result.iterations) == 1
    assert result.stats.total_iterations == 1


@pytest.mark.asyncio
async def test_usage_delta_is_recorded(fake_sleep: FakeSleep) -> None:
    provider = FakeUsageProvider([snapshot(12.5)])
    scheduler = _scheduler(
        FakeRunner([passed()]),
        fake_sleep,
        max_iterations=1,
        usage_provider=provider,
        initial_usage=snapshot(10.0),
    )

    result = await scheduler.run()

    assert result.iterations[0].usage_delta == pytest.approx(2.5)
    assert result.stats.total_usage_delta == pytest.approx(2.5)
    assert scheduler.usage.utilization_percent == 12.5


@pytest.mark.asyncio
async def test_unknown_usage_gives_no_delta(fake_sleep: FakeSleep) -> None:
    provider = FakeUsageProvider([None, None, None])
    scheduler = _scheduler(
        FakeRunner([passed(), passed()]),
        fake_sleep,
        max_iterations=2,
        pause_ms=0,
        usage_provider=provider,
    )

    result = await scheduler.run()

    assert [r.usage_delta for r in result.iterations] == [None, None]
    assert result.stats.total_usage_delta == 0
    # after each iteration, plus once at the start of the pause
    assert provider.calls == 3


@pytest.mark.asyncio
async def test_cost_comes_from_cost_model(fake_sleep: FakeSleep) -> None:
    outcome = passed(model="sonnet", input_tokens=2_000_000, output_tokens=100_000, cache_read_tokens=1_000_000)
    result = await _scheduler(FakeRunner([outcome]), fake_sleep, max_iterations=1).run()

    record = result.iterations[0]
    assert record.cost == compute_cost(outcome.usage, "sonnet")
    assert record.cost.total == pytest.approx(6 + 1.5 + 0.3)
    assert record.cache_savings_usd == pytest.approx(2.7)


@pytest.mark.asyncio
async def test_window_is_reset_between_iterations(fake_sleep: FakeSleep) -> None:
    events = {
        1: [ToolEvent(id="a", name="Read", status="running"), ToolEvent(id="b", name="Edit", status="running")],
        2: [ToolEvent(id="c", name="Bash", status="running")],
    }
    scheduler = _scheduler(
        FakeRunner([passed(), passed()], events=events), fake_sleep, max_iterations=2, pause_ms=0
    )

    await scheduler.run()

    assert [e.id for e in scheduler.tool_events()] == ["c"]
    assert scheduler.window.operation_count == 1
    assert scheduler.progress.index == 2
    assert scheduler.status == "working on 2"


@pytest.mark.asyncio
async def test_recorder_gets_every_iteration_and_the_session(fake_sleep: FakeSleep) -> None:
    recorder = FakeRecorder()
    scheduler = _scheduler(
        FakeRunner([passed("a"), passed("b", exit_signal=True)]),
        fake_sleep,
        max_iterations=5,
        pause_ms=0,
        recorder=recorder,
        session_id="abc123",
    )

    await scheduler.run()

    assert [e.iteration for e in recorder.iterations] == [1, 2]
    assert {e.session_id for e in recorder.iterations} == {"abc123"}
    assert len(recorder.sessions) == 1
    summary = recorder.sessions[0]
    assert summary.reason == "exit_signal"
    assert summary.success is True
    assert summary.total_iterations == 2


@pytest.mark.asyncio
async def test_on_change_sees_phase_transitions(fake_sleep: FakeSleep) -> None:
    phases: list[Phase] = []

    def on_change(scheduler: IterationScheduler) -> None:
        if not phases or phases[-1] != scheduler.phase:
            phases.append(scheduler.phase)

    scheduler = _scheduler(
        FakeRunner([passed(), passed()]),
        fake_sleep,
        max_iterations=2,
        pause_ms=1000,
        on_change=on_change,
    )
    await scheduler.run()

    assert phases == [Phase.RUNNING, Phase.PAUSE, Phase.RUNNING, Phase.DONE]


def test_rejects_bad_arguments() -> None:
    with pytest.raises(ValueError):
        IterationScheduler(FakeRunner([]), max_iterations=0)
    with pytest.raises(ValueError):
        IterationScheduler(FakeRunner([]), max_iterations=1, pause_ms=-1)


@pytest.mark.asyncio
async def test_run_only_once(fake_sleep: FakeSleep) -> None:
    scheduler = _scheduler(FakeRunner([passed()]), fake_sleep, max_iterations=1)
    await scheduler.run()
    with pytest.raises(RuntimeError):
        await scheduler.run()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("pause_ms", "delays", "countdowns"),
    [
        (500, [0.5], [1]),
        (1500, [1.0, 0.5], [2, 1]),
        (2000, [1.0, 1.0], [2, 1]),
    ],
)
async def test_pause_honours_configured_milliseconds(pause_ms, delays, countdowns) -> None:
    holder: dict[str, IterationScheduler] = {}
    seen: list[int] = []
    sleep = FakeSleep(on_tick=lambda n: seen.append(holder["s"].pause_countdown))
    scheduler = _scheduler(FakeRunner([passed("a"), passed("b")]), sleep, max_iterations=2, pause_ms=pause_ms)
    holder["s"] = scheduler

    await scheduler.run()

    assert sleep.delays == delays
    assert sum(sleep.delays) == pytest.approx(pause_ms / 1000)
    assert seen == countdowns


@pytest.mark.asyncio
async def test_iteration_starts_with_the_planned_task(fake_sleep: FakeSleep) -> None:
    upcoming = iter([NextTask(phase="Phase 1: Core", task="Add login"), None])
    holder: dict[str, IterationScheduler] = {}
    seen: list[tuple] = []

    def on_run(iteration: int) -> None:
        progress = holder["s"].progress
        seen.append((iteration, progress.task, progress.phase))

    scheduler = _scheduler(
        FakeRunner([passed("Add login"), passed("b")], on_run=on_run),
        fake_sleep,
        max_iterations=2,
        task_source=lambda: next(upcoming),
    )
    holder["s"] = scheduler

    await scheduler.run()

    assert seen == [(1, "Add login", "Phase 1: Core"), (2, "Selecting next task...", None)]


@pytest.mark.asyncio
async def test_unreadable_plan_does_not_stop_the_loop(fake_sleep: FakeSleep) -> None:
    def broken() -> NextTask:
        raise PermissionError("plan is locked")

    scheduler = _scheduler(FakeRunner([passed()]), fake_sleep, max_iterations=1, task_source=broken)

    result = await scheduler.run()

    assert result.success
    assert scheduler.progress.phase is None


class ModelReportingRunner(FakeRunner):
    def __init__(self, outcomes, models: list[str], **kwargs) -> None:
        super().__init__(outcomes, **kwargs)
        self.models = list(models)

    async def run(self, iteration, sinks):
        sinks.model(self.models[iteration - 1])
        return await super().run(iteration, sinks)


@pytest.mark.asyncio
async def test_runner_reported_model_is_shown(fake_sleep: FakeSleep) -> None:
    holder: dict[str, IterationScheduler] = {}
    seen: list[str] = []
    runner = ModelReportingRunner(
        [passed(model="sonnet"), passed(model="opus")],
        ["sonnet", "opus"],
        on_run=lambda _: seen.append(holder["s"].progress.model),
    )
    scheduler = _scheduler(runner, fake_sleep, max_iterations=2)
    holder["s"] = scheduler

    await scheduler.run()

    assert seen == ["sonnet", "opus"]
    assert [r.model for r in scheduler.session.iterations] == ["sonnet", "opus"]
