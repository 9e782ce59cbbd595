"""Data models for persisted metrics records."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ralph.session.models import IterationRecord, Session


@dataclass
class IterationEvent:
    """One completed iteration, as written to ``iterations.jsonl``."""

    ts: str
    session_id: str
    iteration: int
    task: str
    success: bool
    validation: str
    model: str
    operations: int
    duration_sec: float
    input_tokens: int
    output_tokens: int
    cache_read_tokens: int
    cache_write_tokens: int
    cost_usd: float
    cache_savings_usd: float
    usage_delta: float | None = None
    exit_signal: bool = False
    tools_used: list[str] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def from_record(cls, session_id: str, record: IterationRecord) -> IterationEvent:
        return cls(
            ts=datetime.now().isoformat(),
            session_id=session_id,
            iteration=record.index,
            task=record.task_description,
            success=record.passed,
            validation=record.validation,
            model=record.model,
            operations=record.operation_count,
            duration_sec=record.duration_sec,
            input_tokens=record.input_tokens,
            output_tokens=record.output_tokens,
            cache_read_tokens=record.cache_read_tokens,
            cache_write_tokens=record.cache_write_tokens,
            cost_usd=record.cost.total,
            cache_savings_usd=record.cache_savings_usd,
            usage_delta=record.usage_delta,
            exit_signal=record.exit_signal,
            tools_used=sorted(set(record.tools_used)),
            error=record.error,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SessionSummary:
    """End-of-session aggregate record."""

    session_id: str
    started_at: str
    ended_at: str
    duration_ms: int
    success: bool
    reason: str
    total_iterations: int
    successful_iterations: int
    total_operations: int
    total_input_tokens: int
    total_output_tokens: int
    total_tokens: int
    cache_read_tokens: int
    cache_write_tokens: int
    total_cost_usd: float
    cache_savings_usd: float
    model_breakdown: dict[str, int] = field(default_factory=dict)
    tools_used: list[str] = field(default_factory=list)
    failure_reason: str | None = None

    @classmethod
    def from_session(
        cls, session: Session, *, reason: str, ended_at: str, duration_ms: int
    ) -> SessionSummary:
        stats = session.stats
        tools = {name for record in session.iterations for name in record.tools_used}
        return cls(
            session_id=session.session_id,
            started_at=session.started_at,
            ended_at=ended_at,
            duration_ms=duration_ms,
            success=session.phase.value == "done",
            reason=reason,
            total_iterations=stats.total_iterations,
            successful_iterations=stats.successful_iterations,
            total_operations=stats.total_operations,
            total_input_tokens=stats.total_input_tokens,
            total_output_tokens=stats.total_output_tokens,
            total_tokens=stats.total_tokens,
            cache_read_tokens=stats.cache_read_tokens,
            cache_write_tokens=stats.cache_write_tokens,
            total_cost_usd=stats.total_cost.total,
            cache_savings_usd=stats.cache_savings_usd,
            model_breakdown=dict(stats.model_breakdown),
            tools_used=sorted(tools),
            failure_reason=session.error,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
