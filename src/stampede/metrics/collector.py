"""Metrics collection for load test runs.

Virtual users report outcomes through ``MetricsCollector.ingest()``, which
only enqueues. A single writer task owns the aggregates and folds outcomes in,
so there is no shared mutable state between users:

    users --ingest()--> asyncio.Queue --> writer task --> MetricsAggregator

``snapshot()`` copies the current aggregates and never blocks ingestion.

Example:
    collector = MetricsCollector(clock=clock)
    await collector.start()
    collector.ingest(outcome)
    await collector.flush()
    snapshot = collector.snapshot()
    snapshot.get("http_req_duration").aggregate("p(95)")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from stampede.core.clock import RunClock
from stampede.metrics.outcomes import IterationOutcome, RequestOutcome
from stampede.metrics.quantiles import create_estimator
from stampede.metrics.series import (
    CounterSeries,
    GaugeSeries,
    MetricKind,
    MetricSnapshot,
    RateSeries,
    Series,
    TrendSeries,
)

logger = logging.getLogger(__name__)

HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"
HTTP_REQS = "http_reqs"
ERRORS = "errors"
CHECKS = "checks"
ITERATIONS = "iterations"
ITERATION_DURATION = "iteration_duration"
VUS = "vus"
VUS_MAX = "vus_max"

BUILTIN_METRICS: dict[str, MetricKind] = {
    HTTP_REQ_DURATION: MetricKind.TREND,
    HTTP_REQ_FAILED: MetricKind.RATE,
    HTTP_REQS: MetricKind.COUNTER,
    ERRORS: MetricKind.RATE,
    CHECKS: MetricKind.RATE,
    ITERATIONS: MetricKind.COUNTER,
    ITERATION_DURATION: MetricKind.TREND,
    VUS: MetricKind.GAUGE,
    VUS_MAX: MetricKind.GAUGE,
}

# Metrics that also get a per-endpoint sub-series
TAGGED_METRICS = frozenset({HTTP_REQ_DURATION, HTTP_REQ_FAILED})


def tagged_name(metric: str, endpoint: str) -> str:
    """Name of the per-endpoint sub-series, e.g. ``http_req_duration{endpoint:/health}``."""
    return f"{metric}{{endpoint:{endpoint}}}"


def split_tagged_name(name: str) -> tuple[str, str | None]:
    """Inverse of :func:`tagged_name`; returns ``(base, endpoint or None)``."""
    if name.endswith("}") and "{endpoint:" in name:
        base, _, rest = name.partition("{endpoint:")
        return base, rest[:-1]
    return name, None


@dataclass(frozen=True)
class CheckTally:
    """Pass/fail counts of one named check."""

    passes: int
    fails: int


@dataclass(frozen=True)
class VusSample:
    """Pool membership after a reconciliation tick."""

    active: int
    members: int


@dataclass(frozen=True)
class MetricsSnapshot:
    """Immutable view of all aggregates at one point in time."""

    metrics: Mapping[str, MetricSnapshot]
    checks: Mapping[str, CheckTally]
    elapsed: float

    def get(self, name: str) -> MetricSnapshot | None:
        return self.metrics.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.metrics


class MetricsAggregator:
    """Running aggregates. Not safe for concurrent writers; use the collector."""

    def __init__(self, quantile_mode: str = "exact", relative_accuracy: float = 0.01) -> None:
        self.quantile_mode = quantile_mode
        self.relative_accuracy = relative_accuracy
        self._series: dict[str, Series] = {}
        self._checks: dict[str, list[int]] = {}
        self._vus_peak = 0

        for name, kind in BUILTIN_METRICS.items():
            self._series[name] = self._new_series(name, kind)

    def _new_series(self, name: str, kind: MetricKind) -> Series:
        if kind is MetricKind.TREND:
            return TrendSeries(name, create_estimator(self.quantile_mode, self.relative_accuracy))
        if kind is MetricKind.RATE:
            return RateSeries(name)
        if kind is MetricKind.COUNTER:
            return CounterSeries(name)
        return GaugeSeries(name)

    def _tagged(self, metric: str, endpoint: str) -> Series:
        name = tagged_name(metric, endpoint)
        series = self._series.get(name)
        if series is None:
            series = self._new_series(name, BUILTIN_METRICS[metric])
            self._series[name] = series
        return series

    def add(self, sample: RequestOutcome | IterationOutcome | VusSample) -> None:
        """Fold one sample into the aggregates."""
        if isinstance(sample, RequestOutcome):
            self._add_request(sample)
        elif isinstance(sample, IterationOutcome):
            self._series[ITERATIONS].add(1)
            self._series[ITERATION_DURATION].add(sample.duration_ms)
        elif isinstance(sample, VusSample):
            self._series[VUS].add(sample.active)
            self._vus_peak = max(self._vus_peak, sample.members)
            self._series[VUS_MAX].add(self._vus_peak)
        else:
            raise TypeError(f"Unsupported sample type: {type(sample).__name__}")

    def _add_request(self, outcome: RequestOutcome) -> None:
        failed = outcome.request_failed

        self._series[HTTP_REQS].add(1)
        self._series[HTTP_REQ_DURATION].add(outcome.latency_ms)
        self._series[HTTP_REQ_FAILED].add(failed)
        self._series[ERRORS].add(outcome.is_error)

        self._tagged(HTTP_REQ_DURATION, outcome.endpoint).add(outcome.latency_ms)
        self._tagged(HTTP_REQ_FAILED, outcome.endpoint).add(failed)

        for result in outcome.check_results:
            self._series[CHECKS].add(result.passed)
            tally = self._checks.setdefault(result.name, [0, 0])
            tally[0 if result.passed else 1] += 1

    def snapshot(self, elapsed: float = 0.0) -> MetricsSnapshot:
        metrics = {name: series.snapshot(elapsed) for name, series in sorted(self._series.items())}
        checks = {
            name: CheckTally(passes=tally[0], fails=tally[1])
            for name, tally in sorted(self._checks.items())
        }
        return MetricsSnapshot(
            metrics=MappingProxyType(metrics),
            checks=MappingProxyType(checks),
            elapsed=elapsed,
        )


class MetricsCollector:
    """Single-writer metrics collector.

    ``ingest()`` must be called from the event loop that runs the collector;
    it never blocks and never raises for a well-formed outcome.
    """

    def __init__(
        self,
        clock: RunClock | None = None,
        quantile_mode: str = "exact",
        relative_accuracy: float = 0.01,
    ) -> None:
        self.clock = clock or RunClock()
        self._aggregator = MetricsAggregator(quantile_mode, relative_accuracy)
        self._queue: asyncio.Queue[RequestOutcome | IterationOutcome | VusSample] = (
            asyncio.Queue()
        )
        self._task: asyncio.Task[None] | None = None
        self._running = False

    def ingest(self, outcome: RequestOutcome) -> None:
        """Queue a request outcome for aggregation."""
        self._queue.put_nowait(outcome)

    def ingest_iteration(self, outcome: IterationOutcome) -> None:
        """Queue a completed-iteration record."""
        self._queue.put_nowait(outcome)

    def record_vus(self, active: int, members: int) -> None:
        """Queue the pool size observed after a reconciliation tick."""
        self._queue.put_nowait(VusSample(active=active, members=members))

    async def start(self) -> None:
        """Start the writer task."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._process_loop())
        logger.debug("Metrics collector started")

    async def flush(self) -> None:
        """Wait until every queued sample has been aggregated."""
        if not self._running:
            raise RuntimeError("Metrics collector is not running")
        await self._queue.join()

    async def stop(self) -> None:
        """Drain pending samples, then stop the writer task."""
        if not self._running:
            return

        await self._queue.join()
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.debug("Metrics collector stopped")

    async def _process_loop(self) -> None:
        while True:
            sample = await self._queue.get()
            try:
                self._aggregator.add(sample)
            except Exception:
                # A malformed sample must not stall the writer
                logger.exception("Failed to aggregate sample")
            finally:
                self._queue.task_done()

    @property
    def pending_count(self) -> int:
        """Samples queued but not yet aggregated."""
        return self._queue.qsize()

    def snapshot(self) -> MetricsSnapshot:
        """Copy of the aggregates applied so far."""
        return self._aggregator.snapshot(self.clock.elapsed())
