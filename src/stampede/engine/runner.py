"""Scenario runner: the per-user loop.

Each virtual user repeatedly executes the scenario steps in order:

- RequestStep: issue a request, run its checks, record an outcome
- BatchStep: issue several requests concurrently and wait for all of them
- ThinkStep: pause this user only

Failed checks and failed requests mark the iteration as errored but never
cut it short. Retirement is honoured only between iterations, so a retired
user has always completed a whole number of iterations.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from stampede.core.clock import RunClock
from stampede.engine.checks import Check, run_checks
from stampede.engine.pool import VirtualUser
from stampede.errors import ConfigurationError
from stampede.metrics.collector import MetricsCollector
from stampede.metrics.outcomes import CheckResult, IterationOutcome, RequestOutcome
from stampede.transport.http import Response, Transport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestStep:
    """Request one endpoint (drawn at random when several are configured)."""

    endpoints: tuple[str, ...]
    method: str = "GET"
    checks: tuple[Check, ...] = ()
    headers: dict[str, str] | None = field(default=None, compare=False)
    body: bytes | None = None
    # groups per-endpoint metrics under one tag instead of the concrete path
    name: str | None = None

    def __post_init__(self) -> None:
        if not self.endpoints:
            raise ConfigurationError("A request step needs at least one endpoint")

    def choose_endpoint(self, rng: random.Random) -> str:
        if len(self.endpoints) == 1:
            return self.endpoints[0]
        return rng.choice(self.endpoints)


@dataclass(frozen=True)
class BatchStep:
    """Several requests issued in parallel; counts as one step."""

    requests: tuple[RequestStep, ...]

    def __post_init__(self) -> None:
        if not self.requests:
            raise ConfigurationError("A batch step needs at least one request")


@dataclass(frozen=True)
class ThinkStep:
    """Pause before the next step."""

    seconds: float

    def __post_init__(self) -> None:
        if self.seconds < 0:
            raise ConfigurationError(f"Think time must be >= 0, got {self.seconds}")


Step = RequestStep | BatchStep | ThinkStep


def join_url(base_url: str, endpoint: str) -> str:
    if endpoint.startswith(("http://", "https://")):
        return endpoint
    return f"{base_url.rstrip('/')}/{endpoint.lstrip('/')}"


class ScenarioRunner:
    """Executes scenario iterations on behalf of virtual users.

    One runner is shared by every user of a run; per-user state lives on the
    VirtualUser.

    Args:
        steps: Ordered scenario steps
        transport: Request transport
        collector: Metrics collector receiving outcomes
        clock: Run clock for outcome timestamps
        base_url: Root URL the endpoints are relative to
        rng: Run-scoped random source for endpoint selection
        request_timeout: Per-request timeout in seconds
        sleep: Think-time sleep (injectable for tests)
    """

    def __init__(
        self,
        steps: Sequence[Step],
        transport: Transport,
        collector: MetricsCollector,
        clock: RunClock,
        base_url: str,
        rng: random.Random | None = None,
        request_timeout: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not steps:
            raise ConfigurationError("A scenario needs at least one step")
        if request_timeout <= 0:
            raise ConfigurationError(f"request_timeout must be positive, got {request_timeout}")
        if not any(not isinstance(step, ThinkStep) for step in steps):
            logger.warning("Scenario has no request steps; it will only sleep")

        self.steps = tuple(steps)
        self.transport = transport
        self.collector = collector
        self.clock = clock
        self.base_url = base_url
        self.rng = rng or random.Random()
        self.request_timeout = request_timeout
        self._sleep = sleep

    async def run(self, user: VirtualUser) -> None:
        """Loop until the user is asked to retire."""
        logger.debug(f"Virtual user {user.id} started")
        while not user.retiring:
            await self.run_iteration(user)
            # Yield even when every step completed without suspending
            await asyncio.sleep(0)
        logger.debug(f"Virtual user {user.id} retired after {user.iterations} iteration(s)")

    async def run_iteration(self, user: VirtualUser) -> bool:
        """Run every step once.

        Returns:
            True if any request or check in the iteration failed
        """
        started = time.perf_counter()
        errored = False

        for step in self.steps:
            if isinstance(step, ThinkStep):
                user.mark_sleeping()
                await self._sleep(step.seconds)
            elif isinstance(step, BatchStep):
                user.mark_running()
                outcomes = await asyncio.gather(
                    *(self._execute(request) for request in step.requests)
                )
                errored = any(outcome.is_error for outcome in outcomes) or errored
            else:
                user.mark_running()
                outcome = await self._execute(step)
                errored = outcome.is_error or errored
            user.steps_completed += 1

        user.iterations += 1
        user.mark_idle()
        self.collector.ingest_iteration(
            IterationOutcome(
                duration_ms=(time.perf_counter() - started) * 1000.0,
                failed=errored,
                timestamp=self.clock.elapsed(),
            )
        )
        return errored

    async def _execute(self, step: RequestStep) -> RequestOutcome:
        endpoint = step.choose_endpoint(self.rng)
        started = time.perf_counter()
        try:
            response = await self.transport.issue_request(
                step.method,
                join_url(self.base_url, endpoint),
                timeout=self.request_timeout,
                headers=step.headers,
                body=step.body,
            )
        except asyncio.CancelledError:
            # cancelled after the graceful stop expired; the request still counts
            interrupted = Response(
                status=0,
                latency_ms=(time.perf_counter() - started) * 1000.0,
                error="interrupted",
            )
            self._record(step, endpoint, interrupted, ())
            raise

        return self._record(step, endpoint, response, run_checks(step.checks, response))

    def _record(
        self,
        step: RequestStep,
        endpoint: str,
        response: Response,
        results: tuple[CheckResult, ...],
    ) -> RequestOutcome:
        outcome = RequestOutcome(
            endpoint=step.name or endpoint,
            status=response.status,
            latency_ms=response.latency_ms,
            checks_passed=all(result.passed for result in results),
            timestamp=self.clock.elapsed(),
            method=step.method,
            error=response.error,
            check_results=results,
        )
        self.collector.ingest(outcome)
        return outcome
