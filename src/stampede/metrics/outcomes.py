"""Outcome records produced by virtual users.

Outcomes are immutable and only live until the collector has folded them
into its aggregates.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class CheckResult:
    """Result of one named check against one response."""

    name: str
    passed: bool


@dataclass(frozen=True, slots=True)
class RequestOutcome:
    """Outcome of a single request step."""

    endpoint: str
    status: int
    latency_ms: float
    checks_passed: bool
    timestamp: float  # seconds since run start
    method: str = "GET"
    error: str | None = None
    check_results: tuple[CheckResult, ...] = field(default_factory=tuple)

    @property
    def request_failed(self) -> bool:
        """Transport failure (status 0) or an HTTP error status."""
        return self.status == 0 or self.status >= 400

    @property
    def is_error(self) -> bool:
        return self.request_failed or not self.checks_passed


@dataclass(frozen=True, slots=True)
class IterationOutcome:
    """Outcome of one complete pass through the scenario steps."""

    duration_ms: float
    failed: bool
    timestamp: float
