"""Task runner that executes one iteration through the ``claude`` CLI."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from ralph.providers.base import IterationSinks
from ralph.providers.claude.constants import (
    DEFAULT_BINARY,
    DEFAULT_MODEL,
    PRINT_MODE_ARGS,
    RESULT_PREVIEW_LEN,
    SKIP_PERMISSIONS_ARG,
    STATUS_MAX_LEN,
    STREAM_JSON_ARGS,
    STREAM_LINE_LIMIT,
)
from ralph.providers.claude.stream import (
    ToolUse,
    extract_usage,
    first_meaningful_line,
    has_exit_signal,
    parse_assistant_message,
    parse_ralph_status,
    parse_stream_line,
    parse_tool_results,
)
from ralph.session.models import IterationOutcome, TokenUsage, ToolEvent, now_ms
from ralph.utils.formatting import truncate

logger = logging.getLogger(__name__)


def build_claude_args(model: str | None = None, *, skip_permissions: bool = True) -> list[str]:
    """Arguments for a print-mode, stream-json run; the prompt is sent on stdin."""
    args = list(PRINT_MODE_ARGS)
    if skip_permissions:
        args.append(SKIP_PERMISSIONS_ARG)
    args.extend(STREAM_JSON_ARGS)
    if model:
        args.extend(["--model", model])
    return args


@dataclass
class _StreamState:
    """Everything accumulated while reading one run's output."""

    transcript: list[str] = field(default_factory=list)
    tools: dict[str, ToolEvent] = field(default_factory=dict)
    model_breakdown: dict[str, int] = field(default_factory=dict)
    usage: TokenUsage = field(default_factory=TokenUsage)
    is_error: bool = False
    duration_ms: float | None = None
    task: str | None = None
    model: str = DEFAULT_MODEL

    @property
    def text(self) -> str:
        return "\n".join(self.transcript)


class ClaudeCodeRunner:
    """Runs the agent prompt once per iteration and reports progress through sinks.

    Never raises for run failures: a missing binary, a crash or an error
    result all come back as ``IterationOutcome(success=False, error=...)``.
    With a ``model_selector`` the model is chosen afresh for every iteration.
    """

    def __init__(
        self,
        prompt: str,
        *,
        model: str = DEFAULT_MODEL,
        binary: str = DEFAULT_BINARY,
        cwd: str | None = None,
        skip_permissions: bool = True,
        model_selector: Callable[[], str] | None = None,
    ):
        self.prompt = prompt
        self.model = model
        self.model_selector = model_selector
        self.binary = binary
        self.cwd = cwd
        self.skip_permissions = skip_permissions

    async def run(self, iteration: int, sinks: IterationSinks) -> IterationOutcome:
        started = time.monotonic()
        model = self.model_selector() if self.model_selector is not None else self.model
        sinks.model(model)
        args = build_claude_args(model, skip_permissions=self.skip_permissions)
        logger.debug("Iteration %d: %s %s", iteration, self.binary, " ".join(args))

        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                limit=STREAM_LINE_LIMIT,
            )
        except OSError as e:
            logger.warning("Could not start %s: %s", self.binary, e)
            return IterationOutcome(
                success=False,
                model=model,
                duration_sec=time.monotonic() - started,
                error=f"Failed to start {self.binary}: {e}",
            )

        state = _StreamState(model=model)
        stderr_task = asyncio.create_task(proc.stderr.read())
        try:
            proc.stdin.write(self.prompt.encode())
            await proc.stdin.drain()
            proc.stdin.close()

            async for raw in proc.stdout:
                event = parse_stream_line(raw.decode(errors="replace"))
                if event is not None:
                    self._handle_event(event, state, sinks)

            returncode = await proc.wait()
            stderr = (await stderr_task).decode(errors="replace").strip()
        except asyncio.CancelledError:
            proc.kill()
            stderr_task.cancel()
            raise
        except (OSError, ValueError) as e:
            logger.warning("Lost connection to %s: %s", self.binary, e)
            if proc.returncode is None:
                proc.kill()
            await proc.wait()
            stderr_task.cancel()
            return self._outcome(state, started, error=f"{self.binary} I/O failed: {e}")

        error = None
        if returncode != 0:
            detail = stderr.splitlines()[-1] if stderr else "no output"
            error = f"{self.binary} exited with code {returncode}: {detail}"
        elif state.is_error:
            error = "Claude reported an error result"
        return self._outcome(state, started, error=error)

    def _handle_event(self, event: dict, state: _StreamState, sinks: IterationSinks) -> None:
        kind = event["type"]

        if kind == "assistant":
            for part in parse_assistant_message(event):
                if isinstance(part, ToolUse):
                    self._on_tool_use(part, state, sinks)
                else:
                    self._on_text(part, state, sinks)

        elif kind == "user":
            for result in parse_tool_results(event):
                known = state.tools.get(result.tool_use_id)
                if known is None:
                    continue
                update = ToolEvent(
                    id=known.id,
                    name=known.name,
                    status="error" if result.is_error else "success",
                    end_time=now_ms(),
                    result={"output": truncate(result.content, RESULT_PREVIEW_LEN)},
                )
                state.tools[known.id] = known.merged(update)
                sinks.tool_event(update)

        elif kind == "result":
            state.usage = extract_usage(event)
            state.is_error = bool(event.get("is_error"))
            duration = event.get("duration_ms")
            if isinstance(duration, (int, float)):
                state.duration_ms = duration
            final = event.get("result")
            if isinstance(final, str) and final:
                state.transcript.append(final)

    def _on_text(self, text: str, state: _StreamState, sinks: IterationSinks) -> None:
        state.transcript.append(text)
        line = first_meaningful_line(text)
        if line:
            sinks.status(truncate(line, STATUS_MAX_LEN))
        if "RALPH_STATUS" in text:
            status = parse_ralph_status(text)
            if status is not None and status.task != state.task:
                state.task = status.task
                sinks.task(status.task)

    def _on_tool_use(self, tool: ToolUse, state: _StreamState, sinks: IterationSinks) -> None:
        event = ToolEvent(
            id=tool.id or f"tool_{uuid.uuid4().hex[:12]}",
            name=tool.name,
            status="running",
            start_time=now_ms(),
            input=tool.input,
            model=state.model,
            subagent_model=tool.subagent_model,
        )
        state.tools[event.id] = event
        family = tool.subagent_model or state.model
        state.model_breakdown[family] = state.model_breakdown.get(family, 0) + 1
        sinks.tool_event(event)
        sinks.model_breakdown(dict(state.model_breakdown))

    def _outcome(self, state: _StreamState, started: float, *, error: str | None) -> IterationOutcome:
        transcript = state.text
        status = parse_ralph_status(transcript)
        exit_signal = status.exit_signal if status else has_exit_signal(transcript)
        if status is None and transcript:
            logger.debug("No RALPH_STATUS block found in output")

        duration = state.duration_ms / 1000 if state.duration_ms is not None else time.monotonic() - started
        usage = state.usage
        return IterationOutcome(
            success=error is None,
            model=state.model,
            operation_count=len(state.tools),
            duration_sec=round(duration),
            task=status.task if status else None,
            validation=status.validation if status else None,
            exit_signal=exit_signal,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            cache_read_tokens=usage.cache_read_tokens,
            cache_write_tokens=usage.cache_write_tokens,
            model_breakdown=dict(state.model_breakdown),
            error=error,
            tools_used=[tool.name for tool in state.tools.values()],
        )
