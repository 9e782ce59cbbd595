"""Task complexity heuristics for adaptive model selection.

Simple tasks run on sonnet, complex ones on opus.  When the signals are
even the task is treated as complex.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from ralph.plan import NextTask

SIMPLE_KEYWORDS = (
    "fix typo",
    "add comment",
    "update comment",
    "rename",
    "remove unused",
    "update docs",
    "add docs",
    "fix lint",
    "cleanup",
    "polish",
    "update readme",
    "bump version",
    "add export",
    "fix import",
    "add type",
    "run test",
    "run tests",
    "execute test",
    "fix test",
    "update test",
    "add test",
    "write test",
    "test for",
)

COMPLEX_KEYWORDS = (
    "refactor",
    "redesign",
    "architect",
    "implement new",
    "create new",
    "design",
    "integrate",
    "migrate",
    "rewrite",
    "add feature",
    "implement feature",
    "api",
    "database",
    "authentication",
    "authorization",
    "security",
)

_SIMPLE_PHASE = re.compile(r"cleanup|polish|docs|testing|test")
_COMPLEX_PHASE = re.compile(r"core|architecture|foundation")
_MULTI_FILE = re.compile(r"\[file:\s*[^,\]]+,")

SHORT_TASK_LEN = 50
LONG_TASK_LEN = 150

Complexity = Literal["simple", "complex"]


@dataclass(frozen=True)
class Assessment:
    complexity: Complexity
    model: Literal["sonnet", "opus"]
    reason: str


def assess_complexity(task: str, phase: str | None = None) -> Assessment:
    """Score *task* (and its plan *phase*) as simple or complex."""
    text = task.lower()
    phase_text = (phase or "").lower()
    simple = complex_ = 0
    reasons: list[str] = []

    for keyword in SIMPLE_KEYWORDS:
        if keyword in text:
            simple += 2
            reasons.append(f'"{keyword}"')
    for keyword in COMPLEX_KEYWORDS:
        if keyword in text:
            complex_ += 2
            reasons.append(f'"{keyword}"')

    if _SIMPLE_PHASE.search(phase_text):
        simple += 1
    if _COMPLEX_PHASE.search(phase_text):
        complex_ += 1

    # compound tasks and cross-file changes
    if " and " in text or task.count(",") >= 2:
        complex_ += 1
    if _MULTI_FILE.search(task):
        complex_ += 1

    if len(task) < SHORT_TASK_LEN:
        simple += 1
    if len(task) > LONG_TASK_LEN:
        complex_ += 1

    level: Complexity = "simple" if simple > complex_ else "complex"
    return Assessment(
        complexity=level,
        model="sonnet" if level == "simple" else "opus",
        reason=", ".join(reasons[:2]) or "default",
    )


def select_model(upcoming: NextTask | None) -> str:
    """Model for the next iteration; opus when the plan has nothing to go on."""
    if upcoming is None or not upcoming.task:
        return "opus"
    return assess_complexity(upcoming.task, upcoming.phase).model
