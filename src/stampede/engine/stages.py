"""Stage scheduler.

Turns an ordered list of stages into a target concurrency curve:

- Each stage ramps linearly from the previous target to its own target
- A stage whose target equals the previous one is a hold
- Zero-duration stages are dropped from the timeline
- After the last stage the target is 0 and the schedule is complete

Example:
    scheduler = StageScheduler([Stage(60, 10), Stage(180, 10), Stage(60, 0)])
    scheduler.target_at(30)    # 5 (halfway up the ramp)
    scheduler.target_at(120)   # 10
    scheduler.is_complete(301) # True
"""

from __future__ import annotations

import bisect
import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

from stampede.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Stage:
    """A time window with a target concurrency level."""

    duration: float
    target: int


@dataclass(frozen=True, slots=True)
class _Window:
    index: int
    start: float
    end: float
    from_target: int
    to_target: int


def _round_half_up(value: float) -> int:
    return max(0, int(math.floor(value + 0.5)))


class StageScheduler:
    """Piecewise-linear target concurrency as a function of elapsed time.

    Windows are half-open on the left, ``(start, end]``, so the value at a
    stage boundary is exactly that stage's target.
    """

    def __init__(self, stages: Sequence[Stage], start_target: int = 0) -> None:
        if not stages:
            raise ConfigurationError("At least one stage is required")
        if start_target < 0:
            raise ConfigurationError(f"start_target must be >= 0, got {start_target}")

        for i, stage in enumerate(stages):
            if stage.duration < 0 or not math.isfinite(stage.duration):
                raise ConfigurationError(f"Stage {i}: invalid duration {stage.duration}")
            if stage.target < 0:
                raise ConfigurationError(f"Stage {i}: target must be >= 0, got {stage.target}")

        self.stages: tuple[Stage, ...] = tuple(stages)
        self.start_target = start_target
        self._windows: list[_Window] = []

        elapsed = 0.0
        previous = start_target
        for i, stage in enumerate(self.stages):
            if stage.duration == 0:
                logger.debug(f"Skipping zero-duration stage {i} (target={stage.target})")
                continue
            end = elapsed + stage.duration
            self._windows.append(_Window(i, elapsed, end, previous, stage.target))
            elapsed = end
            previous = stage.target

        if not self._windows:
            raise ConfigurationError("All stages have zero duration")

        self._ends = [window.end for window in self._windows]
        self.total_duration = self._ends[-1]

    @property
    def peak_target(self) -> int:
        return max(
            [self.start_target] + [w.to_target for w in self._windows]
        )

    def _window_at(self, t: float) -> _Window | None:
        if t > self.total_duration:
            return None
        return self._windows[bisect.bisect_left(self._ends, max(t, 0.0))]

    def target_at(self, t: float) -> int:
        """Target concurrency at elapsed time ``t`` (seconds)."""
        window = self._window_at(t)
        if window is None:
            return 0

        if t >= window.end:
            return window.to_target
        if t <= window.start:
            return window.from_target

        progress = (t - window.start) / (window.end - window.start)
        value = window.from_target + (window.to_target - window.from_target) * progress
        return _round_half_up(value)

    def stage_index_at(self, t: float) -> int | None:
        """Index (into the original stage list) of the stage active at ``t``."""
        window = self._window_at(t)
        return window.index if window else None

    def is_complete(self, t: float) -> bool:
        """True once every stage has elapsed."""
        return t > self.total_duration
