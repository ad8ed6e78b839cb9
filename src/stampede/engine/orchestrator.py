"""Load test orchestration.

Wires a validated scenario into a running load test:

    StageScheduler -> VirtualUserPool -> ScenarioRunner -> MetricsCollector
                                                         -> ThresholdEvaluator

Configuration problems (bad stages, unknown threshold metrics) raise
ConfigurationError from the constructor, so a run never starts half-configured.

Example:
    run = LoadTestRun(scenario, RunOptions.from_settings(settings, scenario))
    summary = await run.run()
    sys.exit(0 if summary.all_passed else 1)
"""

from __future__ import annotations

import asyncio
import logging
import random
import signal
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

from stampede.config import Settings
from stampede.core.clock import RunClock
from stampede.core.definition import RequestSpec, ScenarioDefinition, SleepSpec
from stampede.engine.checks import build_check
from stampede.engine.pool import LifecycleEvent, VirtualUserPool
from stampede.engine.runner import BatchStep, RequestStep, ScenarioRunner, Step, ThinkStep
from stampede.engine.stages import Stage, StageScheduler
from stampede.metrics.collector import MetricsCollector, MetricsSnapshot
from stampede.metrics.thresholds import Threshold, ThresholdEvaluator, Verdict, parse_threshold
from stampede.observability.logging import LogContext
from stampede.summary import RunSummary, build_summary
from stampede.transport.http import HttpTransport, Transport

logger = logging.getLogger(__name__)


@dataclass
class RunOptions:
    """Engine tunables resolved once at run start."""

    base_url: str
    reconcile_interval: float = 0.1
    request_timeout: float = 60.0
    graceful_stop: float = 30.0
    quantile_mode: str = "exact"
    sketch_relative_accuracy: float = 0.01
    threshold_check_interval: float = 2.0
    seed: int | None = None
    max_connections: int = 1000
    max_keepalive_connections: int = 200
    follow_redirects: bool = True
    verify_tls: bool = True

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        scenario: ScenarioDefinition,
        base_url: str | None = None,
        seed: int | None = None,
    ) -> RunOptions:
        """Resolve options from settings and the scenario.

        Base URL precedence: explicit argument, BASE_URL environment variable,
        scenario ``base_url``, settings default. Scenario timeouts and seed
        override the settings defaults.
        """
        if base_url is None:
            if "base_url" in settings.model_fields_set or scenario.base_url is None:
                base_url = settings.base_url
            else:
                base_url = scenario.base_url

        return cls(
            base_url=base_url,
            reconcile_interval=settings.reconcile_interval,
            request_timeout=scenario.request_timeout or settings.request_timeout,
            graceful_stop=(
                scenario.graceful_stop
                if scenario.graceful_stop is not None
                else settings.graceful_stop
            ),
            quantile_mode=settings.quantile_mode,
            sketch_relative_accuracy=settings.sketch_relative_accuracy,
            threshold_check_interval=settings.threshold_check_interval,
            seed=next((s for s in (seed, scenario.seed, settings.seed) if s is not None), None),
            max_connections=settings.max_connections,
            max_keepalive_connections=settings.max_keepalive_connections,
            follow_redirects=settings.follow_redirects,
            verify_tls=settings.verify_tls,
        )

    @property
    def shutdown_grace(self) -> float:
        """Seconds the pool waits for retiring users; never less than one request timeout."""
        return max(self.graceful_stop, self.request_timeout)


def build_scheduler(scenario: ScenarioDefinition) -> StageScheduler:
    stages = [Stage(duration=spec.duration, target=spec.target) for spec in scenario.stages]
    return StageScheduler(stages, start_target=scenario.start_target)


def _request_step(spec: RequestSpec) -> RequestStep:
    return RequestStep(
        endpoints=spec.endpoints,
        method=spec.method,
        checks=tuple(build_check(check) for check in spec.checks),
        headers=spec.headers,
        body=spec.body.encode() if spec.body is not None else None,
        name=spec.name,
    )


def build_steps(scenario: ScenarioDefinition) -> list[Step]:
    steps: list[Step] = []
    for spec in scenario.steps:
        if isinstance(spec, SleepSpec):
            steps.append(ThinkStep(spec.duration))
        elif isinstance(spec, RequestSpec):
            steps.append(_request_step(spec))
        else:
            steps.append(BatchStep(tuple(_request_step(request) for request in spec.requests)))
    return steps


def build_thresholds(scenario: ScenarioDefinition) -> list[Threshold]:
    return [
        parse_threshold(
            metric,
            spec.threshold,
            min_samples=spec.min_samples,
            abort_on_fail=spec.abort_on_fail,
            abort_delay=spec.delay_abort_eval,
        )
        for metric, spec in scenario.threshold_specs()
    ]


class LoadTestRun:
    """One execution of a scenario.

    Args:
        scenario: Validated scenario definition
        options: Resolved engine options
        transport: Request transport; an HttpTransport is created if omitted
        clock: Run clock (injectable for tests)
        sleep: Think-time sleep (injectable for tests)
        run_id: Correlation id for logs and the summary
    """

    def __init__(
        self,
        scenario: ScenarioDefinition,
        options: RunOptions,
        transport: Transport | None = None,
        clock: RunClock | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        run_id: str | None = None,
    ) -> None:
        self.scenario = scenario
        self.options = options
        self.run_id = run_id or uuid4().hex[:8]
        self.clock = clock or RunClock()
        self._transport = transport
        self._sleep = sleep

        self.scheduler = build_scheduler(scenario)
        self.steps = build_steps(scenario)
        self.evaluator = ThresholdEvaluator(build_thresholds(scenario))
        self.evaluator.validate()

        self.cancel_event = asyncio.Event()
        self.abort_reason: str | None = None
        self.collector: MetricsCollector | None = None
        self.pool: VirtualUserPool | None = None
        self.snapshot: MetricsSnapshot | None = None
        self.verdict: Verdict | None = None

    def cancel(self) -> None:
        """Stop starting new iterations; in-flight work finishes (bounded by graceful stop)."""
        if not self.cancel_event.is_set():
            logger.info("Cancellation requested")
            self.cancel_event.set()

    def install_signal_handlers(self) -> None:
        """Translate SIGINT/SIGTERM into a graceful cancel."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.cancel)

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    def _on_lifecycle(self, event: LifecycleEvent) -> None:
        logger.debug(f"Virtual user {event.user_id} {event.kind.value} at {event.at:.2f}s")

    async def _monitor_thresholds(self, collector: MetricsCollector) -> None:
        """Continuously evaluate abort_on_fail thresholds."""
        while not self.cancel_event.is_set():
            await asyncio.sleep(self.options.threshold_check_interval)
            failure = self.evaluator.check_abort(collector.snapshot())
            if failure is not None:
                logger.error(
                    f"Aborting run: threshold {failure.threshold_name} failed "
                    f"(observed {failure.observed_value})"
                )
                self.abort_reason = failure.threshold_name
                self.cancel_event.set()
                return

    async def run(self) -> RunSummary:
        """Execute the scenario and return its summary."""
        with LogContext(run_id=self.run_id, scenario=self.scenario.name):
            return await self._run()

    async def _run(self) -> RunSummary:
        options = self.options
        owned: HttpTransport | None = None
        if self._transport is None:
            owned = HttpTransport(
                max_connections=options.max_connections,
                max_keepalive_connections=options.max_keepalive_connections,
                follow_redirects=options.follow_redirects,
                verify=options.verify_tls,
            )
        transport: Transport = self._transport or owned  # type: ignore[assignment]

        collector = MetricsCollector(
            clock=self.clock,
            quantile_mode=options.quantile_mode,
            relative_accuracy=options.sketch_relative_accuracy,
        )
        runner = ScenarioRunner(
            self.steps,
            transport=transport,
            collector=collector,
            clock=self.clock,
            base_url=options.base_url,
            rng=random.Random(options.seed),
            request_timeout=options.request_timeout,
            sleep=self._sleep,
        )
        pool = VirtualUserPool(
            self.scheduler,
            user_loop=runner.run,
            clock=self.clock,
            reconcile_interval=options.reconcile_interval,
            graceful_stop=options.shutdown_grace,
            on_event=self._on_lifecycle,
            on_tick=collector.record_vus,
        )
        self.collector = collector
        self.pool = pool

        logger.info(
            f"Starting scenario '{self.scenario.name}' against {options.base_url} "
            f"({len(self.steps)} step(s), {len(self.evaluator.thresholds)} threshold(s))"
        )

        started_at = datetime.now(UTC)
        self.clock.start()
        await collector.start()

        monitor: asyncio.Task[None] | None = None
        if any(threshold.abort_on_fail for threshold in self.evaluator.thresholds):
            monitor = asyncio.create_task(self._monitor_thresholds(collector))

        try:
            await pool.run(self.cancel_event)
        finally:
            if monitor is not None:
                monitor.cancel()
                await asyncio.gather(monitor, return_exceptions=True)
            await collector.stop()
            if owned is not None:
                await owned.aclose()

        completed = not self.cancel_event.is_set()
        snapshot = collector.snapshot()
        verdict = self.evaluator.evaluate(snapshot)
        self.snapshot = snapshot
        self.verdict = verdict

        logger.info(
            f"Scenario '{self.scenario.name}' finished in {snapshot.elapsed:.1f}s: "
            f"{'all thresholds passed' if verdict.all_passed else 'thresholds failed'}"
        )

        return build_summary(
            run_id=self.run_id,
            scenario=self.scenario.name,
            base_url=options.base_url,
            started_at=started_at,
            snapshot=snapshot,
            verdict=verdict,
            completed=completed,
            aborted=self.abort_reason is not None,
            abort_reason=self.abort_reason,
            vus_spawned=pool.spawned_total,
        )
