"""Display-side derivations over a tool event snapshot: consecutive groups and stats."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from ralph.session.models import ToolEvent, now_ms


@dataclass
class ToolGroup:
    """A maximal run of consecutive events sharing the same tool name."""

    name: str
    events: list[ToolEvent] = field(default_factory=list)
    has_running: bool = False
    has_error: bool = False
    total_duration_ms: float = 0.0

    def __len__(self) -> int:
        return len(self.events)


@dataclass
class ToolStats:
    """Aggregate numbers shown under the tool activity panel."""

    total: int = 0
    by_name: dict[str, int] = field(default_factory=dict)
    total_duration_ms: float = 0.0
    total_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    avg_cache_efficiency_pct: int = 0


def group_tools(events: list[ToolEvent], now: float | None = None) -> list[ToolGroup]:
    """Run-length group *events* by name, in order.

    ``Read, Edit, Read`` gives three groups; nothing is sorted or merged
    across a different name.
    """
    now = now if now is not None else now_ms()
    groups: list[ToolGroup] = []
    current: ToolGroup | None = None

    for event in events:
        if current is None or current.name != event.name:
            current = ToolGroup(name=event.name)
            groups.append(current)
        current.events.append(event)
        if event.status == "running":
            current.has_running = True
        if event.status == "error":
            current.has_error = True
        if event.start_time is not None:
            current.total_duration_ms += event.duration_ms(now)

    return groups


def tool_stats(events: list[ToolEvent], now: float | None = None) -> ToolStats:
    """Totals over *events*: counts per name, duration, tokens and cache efficiency."""
    now = now if now is not None else now_ms()
    stats = ToolStats(total=len(events))

    for event in events:
        stats.by_name[event.name] = stats.by_name.get(event.name, 0) + 1
        if event.start_time is not None:
            stats.total_duration_ms += event.duration_ms(now)
        usage = event.token_usage
        if usage is not None:
            stats.total_tokens += usage.input_tokens + usage.output_tokens
            stats.cache_read_tokens += usage.cache_read_tokens
            stats.cache_write_tokens += usage.cache_write_tokens

    cacheable = stats.cache_read_tokens + stats.cache_write_tokens
    if cacheable > 0:
        # Half-up rounding, so 62.5 shows as 63
        stats.avg_cache_efficiency_pct = math.floor(100 * stats.cache_read_tokens / cacheable + 0.5)
    return stats
