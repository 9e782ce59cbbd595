"""Dollar cost of token usage for Claude models.

Everything here is pure.  Prices are per million tokens.
"""

from __future__ import annotations

from dataclasses import dataclass

from ralph.session.models import CostBreakdown, TokenUsage


@dataclass(frozen=True)
class ModelPricing:
    input: float
    output: float
    cache_write: float
    cache_read: float


OPUS_PRICING = ModelPricing(input=15, output=75, cache_write=18.75, cache_read=1.5)
SONNET_PRICING = ModelPricing(input=3, output=15, cache_write=3.75, cache_read=0.3)
HAIKU_PRICING = ModelPricing(input=0.8, output=4, cache_write=1, cache_read=0.08)

MODEL_PRICING: dict[str, ModelPricing] = {
    "claude-opus-4": OPUS_PRICING,
    "claude-opus-4-5-20251101": OPUS_PRICING,
    "opus": OPUS_PRICING,
    "claude-sonnet-4": SONNET_PRICING,
    "claude-sonnet-4-20250514": SONNET_PRICING,
    "sonnet": SONNET_PRICING,
    "claude-3-5-haiku": HAIKU_PRICING,
    "claude-3-5-haiku-20241022": HAIKU_PRICING,
    "haiku": HAIKU_PRICING,
}

DEFAULT_PRICING = OPUS_PRICING

_PER_MILLION = 1_000_000


def get_model_pricing(model: str) -> ModelPricing:
    """Exact alias first, then family substring, then Opus."""
    normalized = model.strip().lower()
    if normalized in MODEL_PRICING:
        return MODEL_PRICING[normalized]
    if "opus" in normalized:
        return OPUS_PRICING
    if "sonnet" in normalized:
        return SONNET_PRICING
    if "haiku" in normalized:
        return HAIKU_PRICING
    return DEFAULT_PRICING


def compute_cost(usage: TokenUsage, model: str) -> CostBreakdown:
    pricing = get_model_pricing(model)
    input_cost = usage.input_tokens * pricing.input / _PER_MILLION
    output_cost = usage.output_tokens * pricing.output / _PER_MILLION
    cache_write_cost = usage.cache_write_tokens * pricing.cache_write / _PER_MILLION
    cache_read_cost = usage.cache_read_tokens * pricing.cache_read / _PER_MILLION
    return CostBreakdown(
        input=input_cost,
        output=output_cost,
        cache_write=cache_write_cost,
        cache_read=cache_read_cost,
        total=input_cost + output_cost + cache_write_cost + cache_read_cost,
    )


def compute_cache_savings(usage: TokenUsage, model: str) -> float:
    """What cache reads saved compared to paying full input price for them."""
    pricing = get_model_pricing(model)
    cache_read = usage.cache_read_tokens
    without_cache = cache_read * pricing.input / _PER_MILLION
    with_cache = cache_read * pricing.cache_read / _PER_MILLION
    return without_cache - with_cache


def cache_efficiency(usage: TokenUsage) -> float:
    """Share of input that came from cache, in percent."""
    total_input = usage.input_tokens + usage.cache_read_tokens
    if total_input == 0:
        return 0.0
    return usage.cache_read_tokens / total_input * 100


def format_cost(dollars: float) -> str:
    if dollars == 0:
        return "$0.00"
    if dollars < 0.001:
        return f"{dollars * 100:.2f}¢"
    if dollars < 0.01:
        return f"{dollars * 100:.1f}¢"
    if dollars < 1:
        return f"${dollars:.4f}"
    return f"${dollars:.2f}"


def format_cost_with_delta(total: float, delta: float | None = None) -> str:
    total_str = format_cost(total)
    if not delta:
        return total_str
    return f"{total_str} (+{format_cost(delta)})"


def format_cost_breakdown(breakdown: CostBreakdown) -> list[str]:
    lines: list[str] = []
    if breakdown.input > 0:
        lines.append(f"Input: {format_cost(breakdown.input)}")
    if breakdown.output > 0:
        lines.append(f"Output: {format_cost(breakdown.output)}")
    if breakdown.cache_write > 0:
        lines.append(f"Cache write: {format_cost(breakdown.cache_write)}")
    if breakdown.cache_read > 0:
        lines.append(f"Cache read: {format_cost(breakdown.cache_read)}")
    lines.append(f"Total: {format_cost(breakdown.total)}")
    return lines


def cost_trend(recent_costs: list[float], threshold: float = 0.01) -> str:
    """``increasing``, ``decreasing`` or ``stable`` over the last three costs."""
    if len(recent_costs) < 2:
        return "stable"
    recent = recent_costs[-3:]
    avg = sum(recent) / len(recent)
    last = recent[-1]
    if last > avg * (1 + threshold):
        return "increasing"
    if last < avg * (1 - threshold):
        return "decreasing"
    return "stable"


class ClaudePricing:
    """Cost model backed by the static Claude price table."""

    def compute_cost(self, usage: TokenUsage, model: str) -> CostBreakdown:
        return compute_cost(usage, model)

    def compute_cache_savings(self, usage: TokenUsage, model: str) -> float:
        return compute_cache_savings(usage, model)
