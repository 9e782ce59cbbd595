"""Reading IMPLEMENTATION_PLAN.md: phases, checkbox tasks, and the next task to do."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

_FUTURE_WORK = re.compile(r"^#{2,3}\s*Future\s*Work", re.IGNORECASE)
_PHASE_HEADER = re.compile(r"^#{2,3}\s*(Phase\s*[\d.]+[^#\n]*)", re.IGNORECASE)
_CHECKED = re.compile(r"^\s*-\s*\[x\]\s*(.+)$", re.IGNORECASE)
_UNCHECKED = re.compile(r"^\s*-\s*\[\s*\]\s*(.+)$")


@dataclass
class PlanTask:
    text: str
    checked: bool = False


@dataclass
class PlanPhase:
    name: str
    tasks: list[PlanTask] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return bool(self.tasks) and all(t.checked for t in self.tasks)

    def first_unchecked(self) -> PlanTask | None:
        return next((t for t in self.tasks if not t.checked), None)


@dataclass(frozen=True)
class NextTask:
    phase: str
    task: str


def parse_plan_phases(content: str) -> list[PlanPhase]:
    """Phases (``## Phase N ...`` headers) and their checkbox tasks.

    Everything under a ``Future Work`` heading is ignored.  Tasks before
    the first phase header are ignored too.
    """
    phases: list[PlanPhase] = []
    current: PlanPhase | None = None

    for line in content.splitlines():
        if _FUTURE_WORK.match(line):
            break
        header = _PHASE_HEADER.match(line)
        if header:
            current = PlanPhase(name=header.group(1).strip())
            phases.append(current)
            continue
        if current is None:
            continue
        checked = _CHECKED.match(line)
        if checked:
            current.tasks.append(PlanTask(checked.group(1).strip(), checked=True))
            continue
        unchecked = _UNCHECKED.match(line)
        if unchecked:
            current.tasks.append(PlanTask(unchecked.group(1).strip()))

    return phases


def next_task(phases: list[PlanPhase]) -> NextTask | None:
    """Most likely current task.

    A phase already in progress wins; otherwise the first open task in
    plan order.
    """
    for phase in phases:
        task = phase.first_unchecked()
        if task and any(t.checked for t in phase.tasks):
            return NextTask(phase.name, task.text)

    for phase in phases:
        task = phase.first_unchecked()
        if task:
            return NextTask(phase.name, task.text)
    return None


def read_next_task(path: Path) -> NextTask | None:
    if not path.exists():
        return None
    return next_task(parse_plan_phases(path.read_text()))
