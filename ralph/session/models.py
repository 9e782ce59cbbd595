"""Data models for the iteration loop: tool events, iteration records, session state."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Literal

ToolStatus = Literal["pending", "running", "success", "error"]
Validation = Literal["pass", "fail"]

TERMINAL_STATUSES = frozenset({"success", "error"})
_STATUS_RANK = {"pending": 0, "running": 1, "success": 2, "error": 2}
RECOGNIZED_MODELS = ("opus", "sonnet", "haiku")


def now_ms() -> float:
    """Wall-clock time in epoch milliseconds (the unit of ToolEvent timestamps)."""
    return time.time() * 1000


class Phase(str, Enum):
    """Phase of the iteration state machine."""

    RUNNING = "running"
    PAUSE = "pause"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.DONE, Phase.ERROR)


class StopReason(str, Enum):
    """Why a session left the loop."""

    EXIT_SIGNAL = "exit_signal"
    BUDGET_EXHAUSTED = "budget_exhausted"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class TokenUsage:
    """Token counters for one operation or one iteration."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CostBreakdown:
    """Dollar cost split by token category."""

    input: float = 0.0
    output: float = 0.0
    cache_write: float = 0.0
    cache_read: float = 0.0
    total: float = 0.0

    def __add__(self, other: CostBreakdown) -> CostBreakdown:
        return CostBreakdown(
            input=self.input + other.input,
            output=self.output + other.output,
            cache_write=self.cache_write + other.cache_write,
            cache_read=self.cache_read + other.cache_read,
            total=self.total + other.total,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ToolEvent:
    """One sub-operation (file read, shell command, ...) performed during an iteration.

    Instances are immutable; updates produce a new event via :meth:`merged`.
    """

    id: str
    name: str
    status: ToolStatus = "pending"
    start_time: float | None = None  # epoch ms
    end_time: float | None = None  # epoch ms
    input: dict[str, Any] = field(default_factory=dict)
    token_usage: TokenUsage | None = None
    cost_usd: float | None = None
    model: str | None = None
    result: dict[str, Any] | None = None
    subagent_model: str | None = None
    nested: tuple[ToolEvent, ...] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def duration_ms(self, now: float | None = None) -> float:
        """Elapsed time, using *now* for events that have not finished yet."""
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else (now if now is not None else now_ms())
        return end - self.start_time

    def merged(self, update: ToolEvent) -> ToolEvent:
        """Apply *update* on top of this event.

        Only status, end_time, result, token_usage, cost_usd and model are
        taken from the update, and only when the update carries a value.
        The status only moves forward: pending, running, then success or
        error.
        """
        status = update.status
        if _STATUS_RANK[status] < _STATUS_RANK[self.status]:
            status = self.status
        return replace(
            self,
            status=status,
            end_time=update.end_time if update.end_time is not None else self.end_time,
            result=update.result if update.result is not None else self.result,
            token_usage=update.token_usage if update.token_usage is not None else self.token_usage,
            cost_usd=update.cost_usd if update.cost_usd is not None else self.cost_usd,
            model=update.model if update.model is not None else self.model,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class IterationOutcome:
    """What the task runner resolves with for one iteration."""

    success: bool
    model: str
    operation_count: int = 0
    duration_sec: float = 0
    task: str | None = None
    validation: Validation | None = None
    exit_signal: bool = False
    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_read_tokens: int | None = None
    cache_write_tokens: int | None = None
    model_breakdown: dict[str, int] | None = None
    error: str | None = None
    tools_used: list[str] = field(default_factory=list)

    @property
    def usage(self) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens or 0,
            output_tokens=self.output_tokens or 0,
            cache_read_tokens=self.cache_read_tokens or 0,
            cache_write_tokens=self.cache_write_tokens or 0,
        )


@dataclass(frozen=True)
class IterationRecord:
    """Immutable result of one completed iteration."""

    index: int
    task_description: str
    success: bool
    validation: Validation
    model: str
    operation_count: int
    duration_sec: float
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    model_breakdown: dict[str, int] = field(default_factory=dict)
    cost: CostBreakdown = field(default_factory=CostBreakdown)
    cache_savings_usd: float = 0.0
    usage_delta: float | None = None  # change in 5h subscription utilisation, percent
    exit_signal: bool = False
    error: str | None = None
    tools_used: tuple[str, ...] = ()

    @property
    def passed(self) -> bool:
        return self.success and self.validation == "pass"

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SessionStats:
    """Running totals; always exactly the fold of the iteration records so far."""

    total_iterations: int = 0
    successful_iterations: int = 0
    failed_iterations: int = 0
    total_operations: int = 0
    total_duration_sec: float = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    total_usage_delta: float = 0.0
    model_breakdown: dict[str, int] = field(default_factory=dict)
    total_cost: CostBreakdown = field(default_factory=CostBreakdown)
    cache_savings_usd: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class UsageWindow:
    """One subscription rate-limit window."""

    utilization: float  # percent, 0-100
    resets_at: datetime | None = None


@dataclass(frozen=True)
class UsageSnapshot:
    """Subscription usage as reported by the usage endpoint."""

    five_hour: UsageWindow
    seven_day: UsageWindow
    seven_day_sonnet: UsageWindow | None = None

    @property
    def utilization_percent(self) -> float:
        return self.five_hour.utilization


@dataclass
class IterationProgress:
    """Per-iteration scratch state for the live display; reset every iteration."""

    index: int = 0
    status: str = "Starting..."
    task: str = "Selecting next task..."
    phase: str | None = None
    model: str = ""
    model_breakdown: dict[str, int] = field(default_factory=dict)
    started_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed_sec(self) -> int:
        return int(time.monotonic() - self.started_at)


@dataclass
class Session:
    """Top-level state of one orchestration run."""

    session_id: str
    max_iterations: int
    phase: Phase = Phase.RUNNING
    iterations: list[IterationRecord] = field(default_factory=list)
    stats: SessionStats = field(default_factory=SessionStats)
    cancel_requested: bool = False
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    error: str | None = None

    @property
    def completed_tasks(self) -> list[str]:
        return [r.task_description for r in self.iterations if r.passed]


@dataclass
class SessionResult:
    """Returned to the caller once the loop reaches a terminal phase."""

    completed: bool
    reason: StopReason
    phase: Phase
    iterations: list[IterationRecord]
    stats: SessionStats
    summary: str
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.phase == Phase.DONE
