"""Folding of iteration records into running session totals."""

from __future__ import annotations

from dataclasses import replace

from ralph.session.models import RECOGNIZED_MODELS, IterationRecord, SessionStats


def apply(stats: SessionStats, record: IterationRecord) -> SessionStats:
    """Return *stats* plus the contribution of *record*.

    Costs and cache savings are already on the record (computed by the cost
    model when the record was built); this only sums.  Models outside
    opus/sonnet/haiku still count toward every total except
    ``model_breakdown``.
    """
    model_breakdown = dict(stats.model_breakdown)
    if record.model in RECOGNIZED_MODELS:
        model_breakdown[record.model] = model_breakdown.get(record.model, 0) + 1

    return replace(
        stats,
        total_iterations=stats.total_iterations + 1,
        successful_iterations=stats.successful_iterations + (1 if record.passed else 0),
        failed_iterations=stats.failed_iterations + (0 if record.passed else 1),
        total_operations=stats.total_operations + record.operation_count,
        total_duration_sec=stats.total_duration_sec + record.duration_sec,
        total_input_tokens=stats.total_input_tokens + record.input_tokens,
        total_output_tokens=stats.total_output_tokens + record.output_tokens,
        cache_read_tokens=stats.cache_read_tokens + record.cache_read_tokens,
        cache_write_tokens=stats.cache_write_tokens + record.cache_write_tokens,
        total_usage_delta=stats.total_usage_delta + (record.usage_delta or 0.0),
        model_breakdown=model_breakdown,
        total_cost=stats.total_cost + record.cost,
        cache_savings_usd=stats.cache_savings_usd + record.cache_savings_usd,
    )


def fold(records: list[IterationRecord]) -> SessionStats:
    """Stats for a whole list of records, starting from zero."""
    stats = SessionStats()
    for record in records:
        stats = apply(stats, record)
    return stats
