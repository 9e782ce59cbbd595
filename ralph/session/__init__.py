"""Core iteration engine: tool event window, grouping, stats folding, scheduler."""

from ralph.session.models import (
    IterationOutcome,
    IterationRecord,
    Phase,
    Session,
    SessionResult,
    SessionStats,
    StopReason,
    ToolEvent,
)
from ralph.session.window import ToolEventWindow

__all__ = [
    "IterationOutcome",
    "IterationRecord",
    "Phase",
    "Session",
    "SessionResult",
    "SessionStats",
    "StopReason",
    "ToolEvent",
    "ToolEventWindow",
]
