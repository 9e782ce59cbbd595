from __future__ import annotations

import asyncio
import json

import pytest

from ralph.providers.base import IterationSinks
from ralph.providers.claude.runner import ClaudeCodeRunner, build_claude_args


class FakeStream:
    def __init__(self, lines: list[str]) -> None:
        self._chunks = [line.encode() + b"\n" for line in lines]

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for chunk in self._chunks:
            yield chunk

    async def read(self) -> bytes:
        return b"".join(self._chunks)


class FakeStdin:
    def __init__(self) -> None:
        self.data = b""
        self.closed = False

    def write(self, data: bytes) -> None:
        self.data += data

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True


class FakeProcess:
    def __init__(self, stdout: list[str], returncode: int = 0, stderr: str = "") -> None:
        self.stdin = FakeStdin()
        self.stdout = FakeStream(stdout)
        self.stderr = FakeStream([stderr] if stderr else [])
        self.returncode: int | None = None
        self._exit = returncode

    async def wait(self) -> int:
        self.returncode = self._exit
        return self._exit

    def kill(self) -> None:
        self.returncode = -9


class RecordingSinks:
    def __init__(self) -> None:
        self.tool_events: list = []
        self.statuses: list[str] = []
        self.tasks: list[str] = []
        self.breakdowns: list[dict] = []
        self.models: list[str] = []

    def build(self) -> IterationSinks:
        return IterationSinks(
            tool_event=self.tool_events.append,
            status=self.statuses.append,
            task=self.tasks.append,
            model_breakdown=self.breakdowns.append,
            model=self.models.append,
        )


def _assistant(*blocks: dict) -> str:
    return json.dumps({"type": "assistant", "message": {"content": list(blocks)}})


def _tool_result(tool_id: str, is_error: bool = False) -> str:
    block = {"type": "tool_result", "tool_use_id": tool_id, "content": "ok", "is_error": is_error}
    return json.dumps({"type": "user", "message": {"content": [block]}})


STATUS_TEXT = 'Done.\n```\nRALPH_STATUS:\ntask: "Add login"\nvalidation: pass\nEXIT_SIGNAL: false\n```'

TRANSCRIPT = [
    json.dumps({"type": "system", "subtype": "init"}),
    _assistant(
        {"type": "text", "text": "# Plan\nWorking on auth"},
        {"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "a.py"}},
    ),
    _tool_result("t1"),
    "garbage line",
    _assistant({"type": "tool_use", "id": "t2", "name": "Task", "input": {"model": "sonnet"}}),
    _tool_result("t2", is_error=True),
    _assistant({"type": "text", "text": STATUS_TEXT}),
    json.dumps(
        {
            "type": "result",
            "is_error": False,
            "duration_ms": 42_000,
            "usage": {
                "input_tokens": 100,
                "output_tokens": 200,
                "cache_read_input_tokens": 300,
                "cache_creation_input_tokens": 400,
            },
        }
    ),
]


def _patch_spawn(monkeypatch: pytest.MonkeyPatch, process: FakeProcess, calls: list | None = None) -> None:
    async def fake_exec(*args, **kwargs):
        if calls is not None:
            calls.append(args)
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)


def test_build_claude_args() -> None:
    assert build_claude_args("sonnet") == [
        "-p",
        "--dangerously-skip-permissions",
        "--output-format",
        "stream-json",
        "--verbose",
        "--model",
        "sonnet",
    ]
    assert "--dangerously-skip-permissions" not in build_claude_args(None, skip_permissions=False)


@pytest.mark.asyncio
async def test_successful_run(monkeypatch: pytest.MonkeyPatch) -> None:
    process = FakeProcess(TRANSCRIPT)
    calls: list = []
    _patch_spawn(monkeypatch, process, calls)
    sinks = RecordingSinks()

    outcome = await ClaudeCodeRunner("do it", model="opus").run(1, sinks.build())

    assert calls[0][0] == "claude"
    assert process.stdin.data == b"do it"
    assert process.stdin.closed
    assert outcome.success is True
    assert outcome.error is None
    assert outcome.task == "Add login"
    assert outcome.validation == "pass"
    assert outcome.exit_signal is False
    assert outcome.operation_count == 2
    assert outcome.tools_used == ["Read", "Task"]
    assert outcome.model_breakdown == {"opus": 1, "sonnet": 1}
    assert outcome.duration_sec == 42
    assert (outcome.input_tokens, outcome.output_tokens) == (100, 200)
    assert (outcome.cache_read_tokens, outcome.cache_write_tokens) == (300, 400)

    assert sinks.statuses[0] == "Working on auth"
    assert sinks.tasks == ["Add login"]
    assert [(e.id, e.status) for e in sinks.tool_events] == [
        ("t1", "running"),
        ("t1", "success"),
        ("t2", "running"),
        ("t2", "error"),
    ]
    assert sinks.tool_events[2].subagent_model == "sonnet"
    assert sinks.tool_events[1].end_time is not None
    assert sinks.breakdowns[-1] == {"opus": 1, "sonnet": 1}
    assert sinks.models == ["opus"]


@pytest.mark.asyncio
async def test_exit_signal_without_status_block(monkeypatch: pytest.MonkeyPatch) -> None:
    lines = [_assistant({"type": "text", "text": "Everything is done. EXIT_SIGNAL: true"})]
    _patch_spawn(monkeypatch, FakeProcess(lines))

    outcome = await ClaudeCodeRunner("p").run(1, IterationSinks())

    assert outcome.success is True
    assert outcome.exit_signal is True
    assert outcome.task is None
    assert outcome.validation is None


@pytest.mark.asyncio
async def test_nonzero_exit_is_a_failed_outcome(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_spawn(monkeypatch, FakeProcess([], returncode=2, stderr="warming up\nauth expired"))

    outcome = await ClaudeCodeRunner("p").run(1, IterationSinks())

    assert outcome.success is False
    assert outcome.error == "claude exited with code 2: auth expired"


@pytest.mark.asyncio
async def test_error_result_is_a_failed_outcome(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_spawn(monkeypatch, FakeProcess([json.dumps({"type": "result", "is_error": True})]))

    outcome = await ClaudeCodeRunner("p").run(1, IterationSinks())

    assert outcome.success is False
    assert outcome.error == "Claude reported an error result"


@pytest.mark.asyncio
async def test_missing_binary_does_not_raise(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_exec(*args, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", "claude-x")

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)

    outcome = await ClaudeCodeRunner("p", binary="claude-x", model="sonnet").run(1, IterationSinks())

    assert outcome.success is False
    assert outcome.model == "sonnet"
    assert outcome.error.startswith("Failed to start claude-x")


@pytest.mark.asyncio
async def test_model_selector_is_asked_every_iteration(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list = []
    _patch_spawn(monkeypatch, FakeProcess(TRANSCRIPT), calls)
    choices = iter(["sonnet", "opus"])
    runner = ClaudeCodeRunner("p", model="opus", model_selector=lambda: next(choices))
    sinks = RecordingSinks()

    outcome = await runner.run(1, sinks.build())

    assert calls[0][-2:] == ("--model", "sonnet")
    assert outcome.model == "sonnet"
    assert sinks.models == ["sonnet"]
    assert outcome.model_breakdown == {"sonnet": 2}
    assert sinks.tool_events[0].model == "sonnet"

    _patch_spawn(monkeypatch, FakeProcess(TRANSCRIPT), calls)
    second = await runner.run(2, sinks.build())

    assert calls[1][-2:] == ("--model", "opus")
    assert second.model == "opus"
    assert sinks.models == ["sonnet", "opus"]
