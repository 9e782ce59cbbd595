"""The iteration loop: runs the task runner repeatedly and drives the phase state machine."""

from __future__ import annotations

import asyncio
import math
import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING

from loguru import logger

from ralph.metrics.collector import MetricsCollector
from ralph.metrics.cost import ClaudePricing
from ralph.metrics.models import IterationEvent, SessionSummary
from ralph.providers.base import CostModel, IterationSinks, TaskRunner, UsageProvider
from ralph.session import accumulator
from ralph.session.models import (
    IterationOutcome,
    IterationProgress,
    IterationRecord,
    Phase,
    Session,
    SessionResult,
    SessionStats,
    StopReason,
    ToolEvent,
    UsageSnapshot,
)
from ralph.session.summary import SessionSummaryBuilder
from ralph.session.window import ToolEventWindow

if TYPE_CHECKING:
    from ralph.plan import NextTask

DEFAULT_PAUSE_MS = 2000

Sleep = Callable[[float], Awaitable[None]]
OnChange = Callable[["IterationScheduler"], None]
TaskSource = Callable[[], "NextTask | None"]


class IterationScheduler:
    """Sequences iterations of an external task runner.

    Phases: ``running`` -> (``pause`` -> ``running``)* -> ``done`` | ``error``.
    After every iteration the rules are checked in order: failure, exit
    signal, exhausted budget, cancellation; otherwise the loop pauses and
    starts the next iteration.

    Cancellation is cooperative.  :meth:`request_cancel` sets a flag that is
    read after the in-flight iteration settles and between pause ticks; a
    running task is never interrupted and its result is still recorded.
    The runner call has no timeout.
    """

    def __init__(
        self,
        runner: TaskRunner,
        *,
        max_iterations: int,
        cost_model: CostModel | None = None,
        usage_provider: UsageProvider | None = None,
        initial_usage: UsageSnapshot | None = None,
        pause_ms: int = DEFAULT_PAUSE_MS,
        window: ToolEventWindow | None = None,
        summary_builder: SessionSummaryBuilder | None = None,
        recorder: MetricsCollector | None = None,
        model: str = "",
        next_steps: list[str] | None = None,
        on_change: OnChange | None = None,
        sleep: Sleep = asyncio.sleep,
        session_id: str | None = None,
        task_source: TaskSource | None = None,
    ):
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        if pause_ms < 0:
            raise ValueError(f"pause_ms must be >= 0, got {pause_ms}")
        self.runner = runner
        self.cost_model = cost_model or ClaudePricing()
        self.usage_provider = usage_provider
        self.pause_ms = pause_ms
        self.window = window or ToolEventWindow()
        self.summary_builder = summary_builder or SessionSummaryBuilder()
        self.recorder = recorder
        self.next_steps = next_steps
        self.on_change = on_change
        self._sleep = sleep
        self.task_source = task_source

        self.session = Session(
            session_id=session_id or uuid.uuid4().hex[:8],
            max_iterations=max_iterations,
        )
        self.progress = IterationProgress(model=model)
        self.usage = initial_usage
        self.pause_countdown = 0
        self.summary: str | None = None
        self._started = False
        self._sinks = IterationSinks(
            tool_event=self._on_tool_event,
            status=self._on_status,
            task=self._on_task,
            model_breakdown=self._on_model_breakdown,
            model=self._on_model,
        )

    # -- read side (display layer) -------------------------------------------

    @property
    def phase(self) -> Phase:
        return self.session.phase

    @property
    def status(self) -> str:
        return self.progress.status

    @property
    def stats(self) -> SessionStats:
        return self.session.stats

    @property
    def iterations(self) -> list[IterationRecord]:
        return list(self.session.iterations)

    @property
    def max_iterations(self) -> int:
        return self.session.max_iterations

    def tool_events(self) -> list[ToolEvent]:
        return self.window.snapshot()

    # -- control -------------------------------------------------------------

    def request_cancel(self) -> None:
        """Ask the loop to stop; takes effect at the next checkpoint."""
        if not self.session.cancel_requested:
            logger.info("Cancellation requested for session {}", self.session.session_id)
        self.session.cancel_requested = True
        self._notify()

    async def run(self) -> SessionResult:
        if self._started:
            raise RuntimeError("IterationScheduler.run() may only be called once")
        self._started = True
        started = time.monotonic()

        logger.info(
            "Session {} starting (max {} iterations)",
            self.session.session_id,
            self.session.max_iterations,
        )
        reason = await self._loop()
        result = self._finish(reason, time.monotonic() - started)
        logger.info(
            "Session {} finished: {} after {} iterations",
            self.session.session_id,
            reason.value,
            len(self.session.iterations),
        )
        return result

    # -- loop ----------------------------------------------------------------

    async def _loop(self) -> StopReason:
        max_iterations = self.session.max_iterations

        for index in range(1, max_iterations + 1):
            if self.session.cancel_requested:
                self._set_phase(Phase.DONE)
                return StopReason.CANCELLED

            self._begin_iteration(index)
            usage_before = self.usage.utilization_percent if self.usage else None

            try:
                outcome = await self.runner.run(index, self._sinks)
            except Exception as exc:
                logger.opt(exception=exc).error("Task runner raised during iteration {}", index)
                self.session.error = f"Unexpected error: {type(exc).__name__}"
                self._set_phase(Phase.ERROR)
                return StopReason.FAILED

            usage_delta: float | None = None
            if self.usage_provider is not None:
                snapshot = await self._refresh_usage()
                if snapshot is not None and usage_before is not None:
                    usage_delta = snapshot.utilization_percent - usage_before

            record = self._build_record(index, outcome, usage_delta)
            self._append(record)

            if not record.passed:
                self.session.error = outcome.error or "Iteration failed"
                logger.warning("Iteration {} failed: {}", index, self.session.error)
                self._set_phase(Phase.ERROR)
                return StopReason.FAILED

            if outcome.exit_signal:
                self._set_phase(Phase.DONE)
                return StopReason.EXIT_SIGNAL

            if index == max_iterations:
                self._set_phase(Phase.DONE)
                return StopReason.BUDGET_EXHAUSTED

            if self.session.cancel_requested:
                self._set_phase(Phase.DONE)
                return StopReason.CANCELLED

            await self._pause()
            if self.session.cancel_requested:
                self._set_phase(Phase.DONE)
                return StopReason.CANCELLED

        self._set_phase(Phase.DONE)
        return StopReason.BUDGET_EXHAUSTED

    def _begin_iteration(self, index: int) -> None:
        self.window.reset()
        self.progress = IterationProgress(index=index, model=self.progress.model)
        self._seed_task()
        self.pause_countdown = 0
        self._set_phase(Phase.RUNNING)
        logger.debug("Iteration {} starting", index)

    def _seed_task(self) -> None:
        """Show the task the plan expects next until the runner reports its own."""
        if self.task_source is None:
            return
        try:
            upcoming = self.task_source()
        except OSError as exc:
            logger.warning("Could not read the next task: {}", exc)
            return
        if upcoming is not None:
            self.progress.task = upcoming.task
            self.progress.phase = upcoming.phase

    async def _pause(self) -> None:
        self._set_phase(Phase.PAUSE)
        if self.usage_provider is not None:
            await self._refresh_usage()

        remaining_ms = self.pause_ms
        while remaining_ms > 0:
            if self.session.cancel_requested:
                break
            self.pause_countdown = math.ceil(remaining_ms / 1000)
            self._notify()
            step_ms = min(1000, remaining_ms)
            await self._sleep(step_ms / 1000)
            remaining_ms -= step_ms
        self.pause_countdown = 0

    async def _refresh_usage(self) -> UsageSnapshot | None:
        try:
            snapshot = await self.usage_provider.refresh()
        except Exception as exc:
            logger.warning("Usage refresh failed: {}", exc)
            return None
        if snapshot is not None:
            self.usage = snapshot
            self._notify()
        return snapshot

    def _build_record(
        self, index: int, outcome: IterationOutcome, usage_delta: float | None
    ) -> IterationRecord:
        usage = outcome.usage
        validation = outcome.validation or ("pass" if outcome.success else "fail")
        return IterationRecord(
            index=index,
            task_description=outcome.task or "Unknown task",
            success=outcome.success,
            validation=validation,
            model=outcome.model,
            operation_count=outcome.operation_count,
            duration_sec=outcome.duration_sec,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            cache_read_tokens=usage.cache_read_tokens,
            cache_write_tokens=usage.cache_write_tokens,
            model_breakdown=dict(outcome.model_breakdown or {}),
            cost=self.cost_model.compute_cost(usage, outcome.model),
            cache_savings_usd=self.cost_model.compute_cache_savings(usage, outcome.model),
            usage_delta=usage_delta,
            exit_signal=outcome.exit_signal,
            error=outcome.error,
            tools_used=tuple(outcome.tools_used),
        )

    def _append(self, record: IterationRecord) -> None:
        self.session.iterations.append(record)
        self.session.stats = accumulator.apply(self.session.stats, record)
        self.progress.model = record.model
        logger.info(
            "Iteration {} {}: {} ({} ops, {}s)",
            record.index,
            "passed" if record.passed else "failed",
            record.task_description,
            record.operation_count,
            record.duration_sec,
        )
        if self.recorder is not None:
            self.recorder.record_iteration(IterationEvent.from_record(self.session.session_id, record))
        self._notify()

    def _finish(self, reason: StopReason, elapsed_sec: float) -> SessionResult:
        session = self.session
        count = len(session.iterations)

        if reason is StopReason.FAILED:
            title, success = "Build loop stopped", False
        elif reason is StopReason.EXIT_SIGNAL:
            title, success = "Build complete!", True
        elif reason is StopReason.BUDGET_EXHAUSTED:
            title, success = f"Completed {count} iterations", True
        else:
            title = f"Stopped after {count} iterations" if count else "Cancelled"
            success = count > 0

        next_steps = self.next_steps if success else None
        self.summary = self.summary_builder.build(session, title, next_steps, success=success)

        if self.recorder is not None:
            self.recorder.record_session(
                SessionSummary.from_session(
                    session,
                    reason=reason.value,
                    ended_at=datetime.now().isoformat(),
                    duration_ms=int(elapsed_sec * 1000),
                )
            )
        self._notify()

        return SessionResult(
            completed=reason is StopReason.EXIT_SIGNAL,
            reason=reason,
            phase=session.phase,
            iterations=list(session.iterations),
            stats=session.stats,
            summary=self.summary,
            error=session.error,
        )

    # -- sinks -----------------------------------------------------------------

    def _on_tool_event(self, event: ToolEvent) -> None:
        self.window.upsert(event)
        self._notify()

    def _on_status(self, text: str) -> None:
        self.progress.status = text
        self._notify()

    def _on_task(self, text: str) -> None:
        self.progress.task = text
        self._notify()

    def _on_model_breakdown(self, breakdown: dict[str, int]) -> None:
        self.progress.model_breakdown = dict(breakdown)
        self._notify()

    def _on_model(self, model: str) -> None:
        self.progress.model = model
        self._notify()

    def _set_phase(self, phase: Phase) -> None:
        if phase != self.session.phase:
            logger.debug("Phase {} -> {}", self.session.phase.value, phase.value)
        self.session.phase = phase
        self._notify()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self)
