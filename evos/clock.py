"""Logical clock — the only notion of time inside the core."""

from __future__ import annotations


class LogicalClock:
    """Monotonic tick counter shared by every component of a runtime.

    Fragment timestamps, node sync markers and validation records all
    read from the same clock, so ordering is total within one mesh.
    """

    def __init__(self, start: int = 0) -> None:
        if start < 0:
            raise ValueError("clock cannot start before zero")
        self._now = start

    @property
    def now(self) -> int:
        return self._now

    def tick(self) -> int:
        self._now += 1
        return self._now

    def __repr__(self) -> str:
        return f"LogicalClock(now={self._now})"
