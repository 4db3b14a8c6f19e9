"""Bounded, newest-first session activity log."""

from __future__ import annotations

from collections import deque
from datetime import tzinfo
from typing import Any, Callable

from ..clock import clock_time, now_ms
from ..state import LogEntry, Severity


class LogBuffer:
    """Keeps at most ``capacity`` entries; appending past it drops the oldest."""

    def __init__(self, tz: tzinfo, capacity: int = 100, clock: Callable[[], int] = now_ms):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.tz = tz
        self.capacity = capacity
        self._clock = clock
        self._entries: deque[LogEntry] = deque(maxlen=capacity)

    def append(self, entry: LogEntry) -> None:
        # deque(maxlen) drops from the right when full
        self._entries.appendleft(entry)

    def add(self, subject: str, message: str, severity: Severity = Severity.INFO, at_ms: int | None = None) -> LogEntry:
        ts = self._clock() if at_ms is None else at_ms
        entry = LogEntry(time=clock_time(ts, self.tz), subject=subject, message=message, severity=severity)
        self.append(entry)
        return entry

    def clear(self) -> None:
        self._entries.clear()

    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def to_payload(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)
