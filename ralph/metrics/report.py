"""Aggregation helpers behind ``ralph metrics``.

All functions operate on plain dicts read back from the JSONL files.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any

from ralph.metrics.collector import MetricsCollector


def _since(rows: list[dict], hours: float, key: str = "ts") -> list[dict]:
    """Rows whose *key* timestamp falls within the last *hours* hours."""
    cutoff = (datetime.now() - timedelta(hours=hours)).isoformat()
    return [r for r in rows if r.get(key, "") >= cutoff]


def _pct(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


# ---------------------------------------------------------------------------
# Summary report
# ---------------------------------------------------------------------------


def summary_report(collector: MetricsCollector, hours: float = 24) -> dict[str, Any]:
    """High-level summary over the last *hours* hours.

    Returns a dict with sections: overview, tokens, cost, iterations.
    """
    sessions = _since(collector.read_sessions(), hours, key="started_at")
    iterations = _since(collector.read_iterations(), hours)

    total_sessions = len(sessions)
    success_count = sum(1 for s in sessions if s.get("success"))
    completed = sum(1 for s in sessions if s.get("reason") == "exit_signal")

    total_input = sum(s.get("total_input_tokens", 0) for s in sessions)
    total_output = sum(s.get("total_output_tokens", 0) for s in sessions)
    total_tokens = sum(s.get("total_tokens", 0) for s in sessions)
    cache_read = sum(s.get("cache_read_tokens", 0) for s in sessions)

    total_cost = sum(s.get("total_cost_usd", 0.0) for s in sessions)
    savings = sum(s.get("cache_savings_usd", 0.0) for s in sessions)

    passed = sum(1 for i in iterations if i.get("success"))
    avg_iterations = 0.0
    if total_sessions:
        avg_iterations = sum(s.get("total_iterations", 0) for s in sessions) / total_sessions

    return {
        "period_hours": hours,
        "overview": {
            "total_sessions": total_sessions,
            "success_rate": _pct(success_count, total_sessions),
            "completed_sessions": completed,
            "avg_iterations_per_session": round(avg_iterations, 1),
        },
        "tokens": {
            "total_input": total_input,
            "total_output": total_output,
            "total": total_tokens,
            "cache_read": cache_read,
            "avg_per_session": (total_tokens // total_sessions) if total_sessions else 0,
            "cache_efficiency": _pct(cache_read, total_input + cache_read),
        },
        "cost": {
            "total_usd": round(total_cost, 4),
            "cache_savings_usd": round(savings, 4),
            "avg_per_session_usd": round(total_cost / total_sessions, 4) if total_sessions else 0.0,
        },
        "iterations": {
            "total": len(iterations),
            "pass_rate": _pct(passed, len(iterations)),
        },
    }


# ---------------------------------------------------------------------------
# Per-session breakdown
# ---------------------------------------------------------------------------


def session_report(collector: MetricsCollector, last_n: int = 20) -> list[dict[str, Any]]:
    """Recent session summaries, newest first."""
    sessions = collector.read_sessions(limit=last_n)
    rows: list[dict[str, Any]] = []
    for s in reversed(sessions):
        rows.append(
            {
                "session_id": s.get("session_id", "?"),
                "started_at": s.get("started_at", "?"),
                "success": s.get("success", False),
                "reason": s.get("reason", "?"),
                "iterations": s.get("total_iterations", 0),
                "operations": s.get("total_operations", 0),
                "total_tokens": s.get("total_tokens", 0),
                "cost_usd": s.get("total_cost_usd", 0.0),
                "duration_ms": s.get("duration_ms", 0),
                "failure_reason": s.get("failure_reason"),
            }
        )
    return rows


# ---------------------------------------------------------------------------
# Per-model breakdown
# ---------------------------------------------------------------------------


def model_report(collector: MetricsCollector, hours: float = 168) -> list[dict[str, Any]]:
    """Per-model pass rate, tokens and cost per iteration (default: last 7 days)."""
    iterations = _since(collector.read_iterations(), hours)
    by_model: dict[str, list[dict]] = defaultdict(list)
    for i in iterations:
        by_model[i.get("model") or "?"].append(i)

    rows: list[dict[str, Any]] = []
    for model, its in sorted(by_model.items()):
        total = len(its)
        ok = sum(1 for i in its if i.get("success"))
        tokens = sum(i.get("input_tokens", 0) + i.get("output_tokens", 0) for i in its)
        cost = sum(i.get("cost_usd", 0.0) for i in its)
        rows.append(
            {
                "model": model,
                "iterations": total,
                "pass_rate": _pct(ok, total),
                "total_tokens": tokens,
                "tokens_per_iteration": tokens // max(total, 1),
                "cost_usd": round(cost, 4),
                "cost_per_iteration_usd": round(cost / max(total, 1), 4),
            }
        )
    return rows


# ---------------------------------------------------------------------------
# Per-tool usage
# ---------------------------------------------------------------------------


def tool_report(collector: MetricsCollector, hours: float = 24) -> list[dict[str, Any]]:
    """How many iterations used each tool, and how those iterations fared."""
    iterations = _since(collector.read_iterations(), hours)
    by_tool: dict[str, list[dict]] = defaultdict(list)
    for i in iterations:
        for name in i.get("tools_used", []):
            by_tool[name].append(i)

    rows: list[dict[str, Any]] = []
    for name, its in sorted(by_tool.items(), key=lambda kv: (-len(kv[1]), kv[0])):
        total = len(its)
        ok = sum(1 for i in its if i.get("success"))
        errors = Counter((i.get("error") or "")[:120] for i in its if i.get("error"))
        rows.append(
            {
                "tool": name,
                "iterations": total,
                "pass_rate": _pct(ok, total),
                "top_errors": dict(errors.most_common(3)),
            }
        )
    return rows
