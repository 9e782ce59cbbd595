"""Built-in prompts used when the project has no PROMPT_*.md of its own."""

from pathlib import Path

STATUS_BLOCK = """End every run with:
```
RALPH_STATUS:
task: "[task name]"
validation: pass/fail
EXIT_SIGNAL: true/false
```"""

BUILD_PROMPT = f"""# Build Mode

Read `specs/README.md` for the specification index.
Read `IMPLEMENTATION_PLAN.md` for the task list.
Read `AGENTS.md` for build and test commands.

Choose the most important unchecked task.
Search the codebase before writing anything; do not assume code is missing.
Follow the patterns the codebase already uses.

Implement the task completely, then run the validation commands.

Once validation passes:
- mark the task `[x]` in IMPLEMENTATION_PLAN.md
- record anything you discovered in the plan
- commit with a message that explains the change

One task per run. Stop after the commit.

If every task is already checked, report `EXIT_SIGNAL: true`.

{STATUS_BLOCK}
"""

PLAN_PROMPT = f"""# Plan Mode

Compare the specifications in `specs/` with the current code and write
`IMPLEMENTATION_PLAN.md` as a prioritised, phased task list.

- Plan only; do not implement anything.
- Confirm with a code search before listing something as missing.
- Order tasks by dependency and group them into phases.
- Each task should be one meaningful commit.

{STATUS_BLOCK}
"""

RESEARCH_PROMPT = f"""# Research Mode

Read every specification in `specs/` and the code it touches.

For each library, service or technique the specs depend on, find the
current recommended usage, known pitfalls and version constraints.
Write one note per topic under `research/`, citing where each finding
comes from.

- Research only; do not change application code.
- Prefer primary documentation over blog posts.
- Flag anything in the specs that the research contradicts.

{STATUS_BLOCK}
"""

SPEC_PROMPT = f"""# Spec Mode

Read every existing specification in `specs/` before writing anything.

Turn the requested feature into a specification:
- update the existing spec if the feature extends it, otherwise add a new
  file with one topic per file
- be explicit; anything not written down will not be built
- include acceptance criteria, edge cases and what is out of scope
- keep `specs/README.md` as an index of all specs

{STATUS_BLOCK}
"""

BUILD_NEXT_STEPS = ["git log --oneline -5", "ralph work"]
PLAN_NEXT_STEPS = ["cat IMPLEMENTATION_PLAN.md", "ralph work"]
RESEARCH_NEXT_STEPS = ["ralph plan", "ralph work"]
SPEC_NEXT_STEPS = ["ralph research", "ralph plan", "ralph work"]


def load_prompt(path: Path, default: str) -> str:
    """Contents of *path* when it exists and is non-empty, else *default*."""
    if path.exists():
        text = path.read_text().strip()
        if text:
            return text
    return default


def with_feature(prompt: str, feature: str | None) -> str:
    """Prefix *prompt* with the feature the user asked for, if any."""
    if not feature:
        return prompt
    return f'The user wants to add: "{feature}"\n\n{prompt}'
