"""Parsing of Claude Code ``stream-json`` output and the RALPH_STATUS block."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from typing import Any

from ralph.providers.claude.constants import (
    STREAM_EVENT_TYPES,
    SUBAGENT_MODELS,
    SUBAGENT_TOOL,
    TOOL_LABEL_MAX_LEN,
)
from ralph.session.models import TokenUsage, Validation
from ralph.utils.formatting import truncate


@dataclass(frozen=True)
class ToolUse:
    id: str
    name: str
    input: dict[str, Any]
    subagent_model: str | None = None


@dataclass(frozen=True)
class ToolResult:
    tool_use_id: str
    is_error: bool
    content: str


@dataclass(frozen=True)
class RalphStatus:
    """The structured status block the agent prints at the end of an iteration."""

    task: str
    phase: int = 0
    validation: Validation = "fail"
    exit_signal: bool = False


def parse_stream_line(line: str) -> dict[str, Any] | None:
    """Decode one stdout line; ``None`` for blanks, junk and unknown event types."""
    if not line.strip():
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or data.get("type") not in STREAM_EVENT_TYPES:
        return None
    return data


def _content_blocks(event: dict[str, Any]) -> list[dict[str, Any]]:
    message = event.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def subagent_model(name: str, tool_input: dict[str, Any]) -> str | None:
    """Model requested by a ``Task`` tool call, if it is one we recognise."""
    if name != SUBAGENT_TOOL:
        return None
    model = tool_input.get("model")
    if isinstance(model, str) and model.lower() in SUBAGENT_MODELS:
        return model.lower()
    return None


def parse_assistant_message(event: dict[str, Any]) -> list[str | ToolUse]:
    """Text blocks (as ``str``) and tool calls, in message order."""
    if event.get("type") != "assistant":
        return []
    parts: list[str | ToolUse] = []
    for block in _content_blocks(event):
        kind = block.get("type")
        if kind == "text" and isinstance(block.get("text"), str):
            parts.append(block["text"])
        elif kind == "tool_use" and isinstance(block.get("name"), str):
            tool_input = block.get("input")
            if not isinstance(tool_input, dict):
                tool_input = {}
            parts.append(
                ToolUse(
                    id=str(block.get("id") or ""),
                    name=block["name"],
                    input=tool_input,
                    subagent_model=subagent_model(block["name"], tool_input),
                )
            )
    return parts


def _result_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            item.get("text", "") for item in content if isinstance(item, dict) and item.get("type") == "text"
        )
    return ""


def parse_tool_results(event: dict[str, Any]) -> list[ToolResult]:
    """``tool_result`` blocks carried by a ``user`` event."""
    if event.get("type") != "user":
        return []
    return [
        ToolResult(
            tool_use_id=str(block.get("tool_use_id") or ""),
            is_error=bool(block.get("is_error")),
            content=_result_text(block.get("content")),
        )
        for block in _content_blocks(event)
        if block.get("type") == "tool_result"
    ]


def extract_usage(event: dict[str, Any]) -> TokenUsage:
    """Token counters from a ``result`` event (zeros when absent)."""
    usage = event.get("usage")
    if not isinstance(usage, dict):
        return TokenUsage()

    def count(key: str) -> int:
        value = usage.get(key)
        return int(value) if isinstance(value, (int, float)) else 0

    return TokenUsage(
        input_tokens=count("input_tokens"),
        output_tokens=count("output_tokens"),
        cache_read_tokens=count("cache_read_input_tokens"),
        cache_write_tokens=count("cache_creation_input_tokens"),
    )


def first_meaningful_line(text: str) -> str | None:
    """First non-empty line that is not a heading or a code fence."""
    for line in text.splitlines():
        line = line.strip()
        if line and not line.startswith(("#", "`")):
            return line
    return None


# ---------------------------------------------------------------------------
# RALPH_STATUS
# ---------------------------------------------------------------------------

_FENCED_STATUS = re.compile(r"RALPH_STATUS:\s*\n([\s\S]*?)```")
_BARE_STATUS = re.compile(r"RALPH_STATUS:\s*\n([\s\S]*?)(?:\n\n|$)")
_STATUS_FIELD = re.compile(r"^(\w+):\s*(.+)$")


def parse_status_block(block: str) -> RalphStatus | None:
    data: dict[str, str] = {}
    for line in block.strip().splitlines():
        match = _STATUS_FIELD.match(line.strip())
        if match:
            data[match.group(1).lower()] = match.group(2).strip().strip("\"'")

    task = data.get("task")
    if not task:
        return None
    try:
        phase = int(data.get("phase", "0"))
    except ValueError:
        phase = 0
    return RalphStatus(
        task=task,
        phase=phase,
        validation="pass" if data.get("validation") == "pass" else "fail",
        exit_signal=data.get("exit_signal") == "true" or data.get("exitsignal") == "true",
    )


def parse_ralph_status(output: str) -> RalphStatus | None:
    """Find and parse the status block, fenced or bare."""
    match = _FENCED_STATUS.search(output) or _BARE_STATUS.search(output)
    if not match:
        return None
    return parse_status_block(match.group(1))


def has_exit_signal(output: str) -> bool:
    return "EXIT_SIGNAL: true" in output or "EXIT_SIGNAL:true" in output


# ---------------------------------------------------------------------------
# Display labels
# ---------------------------------------------------------------------------


def _display_path(path: str, cwd: str) -> str:
    if path.startswith(cwd + os.sep):
        return path[len(cwd) + 1 :]
    if path.startswith(cwd):
        return path[len(cwd) :] or "."
    return os.path.basename(path) or path


def _display_command(command: str, cwd: str) -> str:
    formatted = command.replace(cwd + os.sep, "").replace(cwd, ".")
    home = os.path.expanduser("~")
    if home and home != "~":
        formatted = formatted.replace(home, "~")
    first_line = formatted.splitlines()[0] if formatted else formatted
    return truncate(first_line, TOOL_LABEL_MAX_LEN)


def format_tool_use(name: str, tool_input: dict[str, Any], cwd: str | None = None) -> str:
    """Short label such as ``Read: src/app.py`` or ``Bash: make test``."""
    cwd = cwd or os.getcwd()
    if name in ("Read", "Edit", "Write"):
        path = tool_input.get("file_path")
        return f"{name}: {_display_path(path, cwd)}" if isinstance(path, str) else name
    if name == "Bash":
        command = tool_input.get("command")
        return f"Bash: {_display_command(command, cwd)}" if isinstance(command, str) else name
    if name in ("Glob", "Grep"):
        pattern = tool_input.get("pattern")
        return f"{name}: {pattern}" if isinstance(pattern, str) else name
    if name == SUBAGENT_TOOL:
        desc = tool_input.get("description")
        return f"Task: {desc}" if isinstance(desc, str) else name
    return name
