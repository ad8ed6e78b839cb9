"""Tests for the scenario runner."""

import asyncio
import random

import pytest
from conftest import FakeTransport

from stampede.core.clock import ManualClock
from stampede.engine.checks import status_is
from stampede.engine.pool import VirtualUser
from stampede.engine.runner import (
    BatchStep,
    RequestStep,
    ScenarioRunner,
    ThinkStep,
    join_url,
)
from stampede.errors import ConfigurationError
from stampede.metrics.collector import MetricsCollector
from stampede.transport.http import Response


class SleepRecorder:
    """Think-time sleep that records instead of waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_runner(
    steps,
    transport: FakeTransport,
    collector: MetricsCollector,
    clock: ManualClock,
    sleep=None,
    rng: random.Random | None = None,
) -> ScenarioRunner:
    return ScenarioRunner(
        steps,
        transport=transport,
        collector=collector,
        clock=clock,
        base_url="http://svc",
        rng=rng,
        sleep=sleep or SleepRecorder(),
    )


@pytest.fixture
async def collector(manual_clock: ManualClock):
    """A started collector, stopped after the test."""
    collector = MetricsCollector(clock=manual_clock)
    await collector.start()
    yield collector
    await collector.stop()


class TestJoinUrl:
    """Tests for URL joining."""

    @pytest.mark.parametrize(
        ("base", "endpoint", "expected"),
        [
            ("http://svc", "/health", "http://svc/health"),
            ("http://svc/", "/health", "http://svc/health"),
            ("http://svc/api", "users", "http://svc/api/users"),
            ("http://svc", "/", "http://svc/"),
            ("http://svc", "https://other/x", "https://other/x"),
        ],
    )
    def test_join(self, base: str, endpoint: str, expected: str) -> None:
        """Endpoints are appended to the base URL with one slash."""
        assert join_url(base, endpoint) == expected


class TestSteps:
    """Tests for step validation."""

    def test_request_step_needs_endpoint(self) -> None:
        """A request step without endpoints is rejected."""
        with pytest.raises(ConfigurationError):
            RequestStep(endpoints=())

    def test_batch_needs_requests(self) -> None:
        """An empty batch is rejected."""
        with pytest.raises(ConfigurationError):
            BatchStep(requests=())

    def test_negative_think_time(self) -> None:
        """Negative think time is rejected."""
        with pytest.raises(ConfigurationError):
            ThinkStep(-1)

    def test_runner_needs_steps(
        self, fake_transport: FakeTransport, manual_clock: ManualClock
    ) -> None:
        """A runner with no steps is rejected."""
        with pytest.raises(ConfigurationError):
            make_runner([], fake_transport, MetricsCollector(clock=manual_clock), manual_clock)

    def test_choose_single_endpoint(self) -> None:
        """A single endpoint is always chosen without consuming randomness."""
        rng = random.Random(1)
        state = rng.getstate()

        assert RequestStep(endpoints=("/health",)).choose_endpoint(rng) == "/health"
        assert rng.getstate() == state


class TestRunIteration:
    """Tests for one pass through the steps."""

    async def test_steps_run_in_order(
        self,
        fake_transport: FakeTransport,
        manual_clock: ManualClock,
        collector: MetricsCollector,
    ) -> None:
        """Every step runs once, in order, and the iteration is counted."""
        sleep = SleepRecorder()
        steps = [
            RequestStep(endpoints=("/",)),
            ThinkStep(1.0),
            RequestStep(endpoints=("/health",), method="HEAD"),
            ThinkStep(0.5),
        ]
        runner = make_runner(steps, fake_transport, collector, manual_clock, sleep=sleep)
        user = VirtualUser(1, started_at=0.0)

        errored = await runner.run_iteration(user)

        assert errored is False
        assert fake_transport.calls == [("GET", "http://svc/"), ("HEAD", "http://svc/health")]
        assert sleep.calls == [1.0, 0.5]
        assert user.iterations == 1
        assert user.steps_completed == 4

    async def test_check_failure_does_not_abort(
        self, manual_clock: ManualClock, collector: MetricsCollector
    ) -> None:
        """A failed check marks the iteration but later steps still run."""
        transport = FakeTransport(
            lambda method, url: Response(500 if url.endswith("/a") else 200, 2.0)
        )
        steps = [
            RequestStep(endpoints=("/a",), checks=(status_is(200),)),
            RequestStep(endpoints=("/b",), checks=(status_is(200),)),
        ]
        runner = make_runner(steps, transport, collector, manual_clock)
        user = VirtualUser(1, started_at=0.0)

        errored = await runner.run_iteration(user)
        await collector.flush()
        snapshot = collector.snapshot()

        assert errored is True
        assert len(transport.calls) == 2
        assert snapshot.get("errors").aggregate("rate") == 0.5
        assert snapshot.get("http_req_failed").aggregate("rate") == 0.5
        assert snapshot.checks["status is 200"].fails == 1
        assert snapshot.checks["status is 200"].passes == 1
        assert snapshot.get("iterations").aggregate("count") == 1

    async def test_transport_failure_is_recorded(
        self, manual_clock: ManualClock, collector: MetricsCollector
    ) -> None:
        """Connection errors become failing outcomes, not exceptions."""
        transport = FakeTransport(lambda method, url: Response(0, 5.0, error="timeout"))
        runner = make_runner([RequestStep(endpoints=("/",))], transport, collector, manual_clock)

        errored = await runner.run_iteration(VirtualUser(1, started_at=0.0))
        await collector.flush()

        assert errored is True
        assert collector.snapshot().get("http_req_failed").aggregate("rate") == 1.0

    async def test_batch_runs_concurrently(
        self, manual_clock: ManualClock, collector: MetricsCollector
    ) -> None:
        """Requests in a batch are in flight together and count as one step."""
        transport = FakeTransport(delay=0.01)
        batch = BatchStep(
            requests=tuple(RequestStep(endpoints=(path,)) for path in ("/", "/health", "/ready"))
        )
        runner = make_runner([batch], transport, collector, manual_clock)
        user = VirtualUser(1, started_at=0.0)

        await runner.run_iteration(user)
        await collector.flush()

        assert transport.max_in_flight == 3
        assert user.steps_completed == 1
        assert collector.snapshot().get("http_reqs").aggregate("count") == 3

    async def test_outcomes_tagged_by_endpoint(
        self,
        fake_transport: FakeTransport,
        manual_clock: ManualClock,
        collector: MetricsCollector,
    ) -> None:
        """Per-endpoint sub-metrics are populated."""
        steps = [RequestStep(endpoints=("/health",)), RequestStep(endpoints=("/api/users",))]
        runner = make_runner(steps, fake_transport, collector, manual_clock)

        await runner.run_iteration(VirtualUser(1, started_at=0.0))
        await collector.flush()
        snapshot = collector.snapshot()

        assert snapshot.get("http_req_duration{endpoint:/health}").count == 1
        assert snapshot.get("http_req_failed{endpoint:/api/users}").count == 1

    async def test_named_request_groups_endpoints(
        self,
        fake_transport: FakeTransport,
        manual_clock: ManualClock,
        collector: MetricsCollector,
    ) -> None:
        """A request name replaces the concrete endpoint in metric tags."""
        step = RequestStep(endpoints=("/users/1", "/users/2"), name="/users/:id")
        runner = make_runner([step], fake_transport, collector, manual_clock)

        for _ in range(4):
            await runner.run_iteration(VirtualUser(1, started_at=0.0))
        await collector.flush()

        assert collector.snapshot().get("http_req_duration{endpoint:/users/:id}").count == 4


class TestRandomEndpoints:
    """Tests for seeded endpoint selection."""

    async def test_same_seed_same_sequence(self, manual_clock: ManualClock) -> None:
        """Runs with the same seed pick the same endpoints."""
        step = RequestStep(endpoints=("/", "/health", "/api/users"))
        sequences = []
        for _ in range(2):
            transport = FakeTransport()
            collector = MetricsCollector(clock=manual_clock)
            runner = make_runner(
                [step], transport, collector, manual_clock, rng=random.Random(1234)
            )
            user = VirtualUser(1, started_at=0.0)
            for _ in range(30):
                await runner.run_iteration(user)
            sequences.append([url for _, url in transport.calls])

        assert sequences[0] == sequences[1]
        assert len(set(sequences[0])) > 1


class TestRunLoop:
    """Tests for the per-user loop."""

    async def test_retirement_between_iterations(
        self,
        fake_transport: FakeTransport,
        manual_clock: ManualClock,
        collector: MetricsCollector,
    ) -> None:
        """A user retired mid-iteration finishes it before exiting."""
        user = VirtualUser(1, started_at=0.0)

        class RetireOnThirdSleep(SleepRecorder):
            async def __call__(self, seconds: float) -> None:
                await super().__call__(seconds)
                if len(self.calls) == 5:  # first think step of iteration 3
                    user.mark_retiring()

        steps = [
            RequestStep(endpoints=("/",)),
            ThinkStep(1.0),
            RequestStep(endpoints=("/health",)),
            ThinkStep(1.0),
        ]
        runner = make_runner(
            steps, fake_transport, collector, manual_clock, sleep=RetireOnThirdSleep()
        )

        await runner.run(user)

        assert user.iterations == 3
        assert user.steps_completed == 3 * len(steps)

    async def test_cancelled_request_is_recorded(
        self, manual_clock: ManualClock, collector: MetricsCollector
    ) -> None:
        """A request cut off by cancellation still counts as a failed request."""
        transport = FakeTransport(delay=3600)
        runner = make_runner([RequestStep(endpoints=("/",))], transport, collector, manual_clock)

        task = asyncio.create_task(runner.run_iteration(VirtualUser(1, started_at=0.0)))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await collector.flush()

        snapshot = collector.snapshot()
        assert len(transport.calls) == 1
        assert snapshot.get("http_reqs").aggregate("count") == 1
        assert snapshot.get("http_req_failed").aggregate("rate") == 1.0
