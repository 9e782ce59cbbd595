from __future__ import annotations

import pytest

from ralph.session import accumulator
from ralph.session.models import CostBreakdown, IterationRecord, SessionStats


def _record(index: int, model: str = "opus", passed: bool = True, **kwargs) -> IterationRecord:
    fields = dict(
        index=index,
        task_description=f"task {index}",
        success=passed,
        validation="pass" if passed else "fail",
        model=model,
        operation_count=4,
        duration_sec=20,
        input_tokens=100,
        output_tokens=50,
        cache_read_tokens=10,
        cache_write_tokens=5,
        cost=CostBreakdown(input=0.1, output=0.2, total=0.3),
        cache_savings_usd=0.01,
    )
    fields.update(kwargs)
    return IterationRecord(**fields)


def test_apply_sums_every_field() -> None:
    stats = accumulator.apply(SessionStats(), _record(1, usage_delta=1.5))

    assert stats.total_iterations == 1
    assert stats.successful_iterations == 1
    assert stats.failed_iterations == 0
    assert stats.total_operations == 4
    assert stats.total_duration_sec == 20
    assert stats.total_input_tokens == 100
    assert stats.total_output_tokens == 50
    assert stats.total_tokens == 150
    assert stats.cache_read_tokens == 10
    assert stats.cache_write_tokens == 5
    assert stats.total_usage_delta == 1.5
    assert stats.model_breakdown == {"opus": 1}
    assert stats.total_cost.total == pytest.approx(0.3)
    assert stats.cache_savings_usd == pytest.approx(0.01)


def test_apply_does_not_mutate_input() -> None:
    start = SessionStats(model_breakdown={"opus": 2})
    accumulator.apply(start, _record(1))
    assert start.model_breakdown == {"opus": 2}
    assert start.total_iterations == 0


def test_fold_matches_stepwise_application() -> None:
    records = [_record(1), _record(2, model="sonnet", passed=False), _record(3, model="haiku")]

    stats = SessionStats()
    for record in records:
        stats = accumulator.apply(stats, record)

    assert accumulator.fold(records) == stats
    assert stats.total_iterations == 3
    assert stats.successful_iterations + stats.failed_iterations == 3
    assert stats.failed_iterations == 1
    assert stats.model_breakdown == {"opus": 1, "sonnet": 1, "haiku": 1}


def test_unrecognized_model_counts_everywhere_but_breakdown() -> None:
    stats = accumulator.fold([_record(1, model="gpt-5"), _record(2)])

    assert stats.total_iterations == 2
    assert stats.total_input_tokens == 200
    assert stats.total_cost.total == pytest.approx(0.6)
    assert stats.model_breakdown == {"opus": 1}


def test_success_needs_passing_validation() -> None:
    record = _record(1, success=True, validation="fail")
    stats = accumulator.fold([record])
    assert stats.failed_iterations == 1
    assert stats.successful_iterations == 0


def test_fold_of_nothing_is_zero() -> None:
    assert accumulator.fold([]) == SessionStats()
