"""Bounded, order-preserving window of the most recent tool events."""

from __future__ import annotations

import threading

from ralph.session.models import ToolEvent

DEFAULT_CAPACITY = 6


class ToolEventWindow:
    """Keeps the last ``capacity`` distinct tool events of the current iteration.

    Events are keyed by ``id``.  An event whose id is already present is
    merged in place (its position is kept); a new id is appended and the
    oldest entry is dropped once the window is over capacity.  Late updates
    for an id that was already evicted are dropped.

    The runner may push events from a worker thread, so every access goes
    through a single lock.  Readers only ever get a copy.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._events: list[ToolEvent] = []
        self._seen: set[str] = set()
        self._lock = threading.Lock()

    def upsert(self, event: ToolEvent) -> None:
        with self._lock:
            for i, existing in enumerate(self._events):
                if existing.id == event.id:
                    self._events[i] = existing.merged(event)
                    return
            if event.id in self._seen:
                return
            self._events.append(event)
            self._seen.add(event.id)
            if len(self._events) > self.capacity:
                del self._events[: len(self._events) - self.capacity]

    def snapshot(self) -> list[ToolEvent]:
        with self._lock:
            return list(self._events)

    def reset(self) -> None:
        with self._lock:
            self._events.clear()
            self._seen.clear()

    @property
    def operation_count(self) -> int:
        """Distinct tool events seen since the last reset, evicted ones included."""
        with self._lock:
            return len(self._seen)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
