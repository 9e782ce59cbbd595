"""JSONL-based metrics collector.

Writes one line per iteration and one line per session to append-only
JSONL files under ~/.ralph/metrics/.  Write failures are logged and
never interrupt the loop.
"""

import json
from pathlib import Path

from loguru import logger

from ralph.metrics.models import IterationEvent, SessionSummary
from ralph.utils.helpers import ensure_dir, get_data_dir


class MetricsCollector:
    """Append-only JSONL metrics writer.

    Files:
        iterations.jsonl  one line per completed iteration
        sessions.jsonl    one line per finished session
    """

    def __init__(self, metrics_dir: Path | None = None, *, enabled: bool = True):
        self.enabled = enabled
        self._dir = metrics_dir or get_data_dir() / "metrics"
        if enabled:
            ensure_dir(self._dir)
        self._iteration_path = self._dir / "iterations.jsonl"
        self._session_path = self._dir / "sessions.jsonl"

    def record_iteration(self, event: IterationEvent) -> None:
        self._append(self._iteration_path, event.to_dict())

    def record_session(self, summary: SessionSummary) -> None:
        self._append(self._session_path, summary.to_dict())

    def read_iterations(self, limit: int = 0) -> list[dict]:
        return self._read(self._iteration_path, limit)

    def read_sessions(self, limit: int = 0) -> list[dict]:
        return self._read(self._session_path, limit)

    def reset(self) -> int:
        """Delete recorded metrics; returns how many files were removed."""
        removed = 0
        for path in (self._iteration_path, self._session_path):
            if path.exists():
                path.unlink()
                removed += 1
        return removed

    @property
    def metrics_dir(self) -> Path:
        return self._dir

    def _append(self, path: Path, data: dict) -> None:
        if not self.enabled:
            return
        try:
            with open(path, "a") as f:
                f.write(json.dumps(data, ensure_ascii=False) + "\n")
        except OSError as e:
            logger.warning(f"Metrics write failed ({path.name}): {e}")

    @staticmethod
    def _read(path: Path, limit: int = 0) -> list[dict]:
        if not path.exists():
            return []
        rows: list[dict] = []
        with open(path) as f:
            for lineno, raw in enumerate(f, 1):
                raw = raw.strip()
                if not raw:
                    continue
                try:
                    rows.append(json.loads(raw))
                except json.JSONDecodeError:
                    logger.warning(f"Skipping corrupt metrics line {path.name}:{lineno}")
        if limit > 0:
            rows = rows[-limit:]
        return rows
