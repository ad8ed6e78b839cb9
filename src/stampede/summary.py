"""Run summary and report sinks.

The summary is the single structured result of a run: every threshold's
verdict plus the raw aggregates. Sinks decide where it goes; the JSON form
is what CI jobs parse.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Protocol

import orjson
from pydantic import BaseModel, Field

from stampede.metrics.collector import MetricsSnapshot
from stampede.metrics.thresholds import ReasonCode, Verdict

logger = logging.getLogger(__name__)


class ThresholdVerdict(BaseModel):
    """Verdict of one threshold."""

    threshold_name: str
    metric_name: str
    passed: bool
    observed_value: float | None
    reason_code: ReasonCode


class MetricSummary(BaseModel):
    """Final aggregates of one metric series."""

    kind: str
    count: int
    values: dict[str, float]


class CheckSummary(BaseModel):
    passes: int
    fails: int


class RunSummary(BaseModel):
    """Structured result of a load test run."""

    run_id: str
    scenario: str
    base_url: str
    started_at: datetime
    duration_seconds: float
    completed: bool = Field(description="All stages ran to the end without cancellation")
    aborted: bool = False
    abort_reason: str | None = None
    vus_spawned: int = 0
    all_passed: bool
    thresholds: list[ThresholdVerdict]
    metrics: dict[str, MetricSummary]
    checks: dict[str, CheckSummary]

    @property
    def exit_code(self) -> int:
        return 0 if self.all_passed else 1

    def to_json(self, indent: bool = True) -> bytes:
        option = orjson.OPT_INDENT_2 if indent else 0
        return orjson.dumps(self.model_dump(mode="json"), option=option)


def build_summary(
    run_id: str,
    scenario: str,
    base_url: str,
    started_at: datetime,
    snapshot: MetricsSnapshot,
    verdict: Verdict,
    completed: bool,
    aborted: bool = False,
    abort_reason: str | None = None,
    vus_spawned: int = 0,
) -> RunSummary:
    """Assemble the summary from the final snapshot and verdict."""
    return RunSummary(
        run_id=run_id,
        scenario=scenario,
        base_url=base_url,
        started_at=started_at,
        duration_seconds=round(snapshot.elapsed, 3),
        completed=completed,
        aborted=aborted,
        abort_reason=abort_reason,
        vus_spawned=vus_spawned,
        all_passed=verdict.all_passed,
        thresholds=[
            ThresholdVerdict(
                threshold_name=result.threshold_name,
                metric_name=result.metric_name,
                passed=result.passed,
                observed_value=result.observed_value,
                reason_code=result.reason_code,
            )
            for result in verdict.results
        ],
        metrics={
            name: MetricSummary(
                kind=metric.kind.value, count=metric.count, values=dict(metric.values)
            )
            for name, metric in snapshot.metrics.items()
        },
        checks={
            name: CheckSummary(passes=tally.passes, fails=tally.fails)
            for name, tally in snapshot.checks.items()
        },
    )


class ReportSink(Protocol):
    """Destination for a finished run's summary."""

    def emit(self, summary: RunSummary) -> None: ...


class JsonStdoutSink:
    """Writes the JSON summary to stdout."""

    def emit(self, summary: RunSummary) -> None:
        sys.stdout.buffer.write(summary.to_json() + b"\n")
        sys.stdout.flush()


class JsonFileSink:
    """Writes the JSON summary to a file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def emit(self, summary: RunSummary) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(summary.to_json())
        logger.info(f"Summary written to {self.path}")
