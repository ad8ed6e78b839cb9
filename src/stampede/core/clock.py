"""Run clock.

Monotonic elapsed time since the run started. Every component that needs to
know "where in the schedule are we" reads the same clock.
"""

from __future__ import annotations

import time
from collections.abc import Callable


class RunClock:
    """Monotonic elapsed-seconds clock.

    Args:
        time_source: Monotonic time function (injectable for tests)
    """

    def __init__(self, time_source: Callable[[], float] = time.monotonic) -> None:
        self._time_source = time_source
        self._started_at: float | None = None

    def start(self) -> None:
        """Start (or restart) the clock at zero."""
        self._started_at = self._time_source()

    @property
    def started(self) -> bool:
        return self._started_at is not None

    def elapsed(self) -> float:
        """Seconds since start; 0.0 before the clock is started."""
        if self._started_at is None:
            return 0.0
        return max(0.0, self._time_source() - self._started_at)


class ManualClock(RunClock):
    """Clock advanced explicitly. Used for deterministic tests."""

    def __init__(self) -> None:
        self._now = 0.0
        super().__init__(time_source=lambda: self._now)

    def advance(self, seconds: float) -> None:
        self._now += seconds

    def set(self, seconds: float) -> None:
        self._now = seconds
