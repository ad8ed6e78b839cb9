"""Virtual user pool.

Keeps the number of active virtual users in line with the stage scheduler:

- Reconciles on a fixed tick of run time (default every 100ms)
- Spawns users as independent asyncio tasks when below target
- Retires the oldest users when above target; a retiring user finishes its
  current iteration and then exits
- Graceful stop: on completion or cancellation everyone is retired and
  given ``graceful_stop`` seconds before stragglers are cancelled

Membership is owned by the pool. User loops only report their own phase
(running/sleeping); they never add or remove members.

Example:
    pool = VirtualUserPool(scheduler, user_loop=runner.run, clock=clock)
    await pool.run(cancel_event)
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from stampede.core.clock import RunClock
from stampede.engine.stages import StageScheduler
from stampede.observability.logging import vu_id_var

logger = logging.getLogger(__name__)


class UserState(str, Enum):
    """Lifecycle state of a virtual user."""

    IDLE = "idle"
    RUNNING = "running"
    SLEEPING = "sleeping"
    RETIRING = "retiring"


class VirtualUser:
    """One simulated session loop."""

    def __init__(self, user_id: int, started_at: float) -> None:
        self.id = user_id
        self.started_at = started_at
        self.iterations = 0
        self.steps_completed = 0
        self.task: asyncio.Task[None] | None = None
        self._phase = UserState.IDLE
        self._retiring = False

    def __repr__(self) -> str:
        return f"VirtualUser(id={self.id}, state={self.state.value})"

    @property
    def state(self) -> UserState:
        return UserState.RETIRING if self._retiring else self._phase

    @property
    def retiring(self) -> bool:
        return self._retiring

    @property
    def finished(self) -> bool:
        return self.task is not None and self.task.done()

    def mark_running(self) -> None:
        self._phase = UserState.RUNNING

    def mark_sleeping(self) -> None:
        self._phase = UserState.SLEEPING

    def mark_idle(self) -> None:
        self._phase = UserState.IDLE

    def mark_retiring(self) -> None:
        """Ask the user to exit after its current iteration. Only the pool calls this."""
        self._retiring = True


UserLoop = Callable[[VirtualUser], Awaitable[None]]


class LifecycleKind(str, Enum):
    SPAWNED = "spawned"
    RETIRING = "retiring"
    RETIRED = "retired"


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    """Emitted when a user is spawned, asked to retire, or has exited."""

    kind: LifecycleKind
    user_id: int
    at: float


class VirtualUserPool:
    """Reconciles active virtual users against the target concurrency.

    Args:
        scheduler: Source of the target concurrency curve
        user_loop: Coroutine run once per user; returns when the user retires
        clock: Run clock shared with the rest of the run
        reconcile_interval: Seconds between reconciliation ticks
        graceful_stop: Seconds to wait for in-flight iterations at shutdown
        on_event: Optional lifecycle listener
        on_tick: Optional ``(active, members)`` callback after each tick
    """

    def __init__(
        self,
        scheduler: StageScheduler,
        user_loop: UserLoop,
        clock: RunClock,
        reconcile_interval: float = 0.1,
        graceful_stop: float = 30.0,
        on_event: Callable[[LifecycleEvent], None] | None = None,
        on_tick: Callable[[int, int], None] | None = None,
    ) -> None:
        if reconcile_interval <= 0:
            raise ValueError("reconcile_interval must be positive")
        self.scheduler = scheduler
        self.clock = clock
        self.reconcile_interval = reconcile_interval
        self.graceful_stop = graceful_stop
        self._user_loop = user_loop
        self._on_event = on_event
        self._on_tick = on_tick
        self._members: dict[int, VirtualUser] = {}
        self._ids = itertools.count(1)
        self._spawned_total = 0

    @property
    def members(self) -> tuple[VirtualUser, ...]:
        """All live users, oldest first (retiring ones included)."""
        return tuple(self._members.values())

    @property
    def active_count(self) -> int:
        """Users not asked to retire."""
        return sum(1 for user in self._members.values() if not user.retiring)

    @property
    def member_count(self) -> int:
        return len(self._members)

    @property
    def spawned_total(self) -> int:
        return self._spawned_total

    def _emit(self, kind: LifecycleKind, user: VirtualUser) -> None:
        if self._on_event is not None:
            self._on_event(LifecycleEvent(kind, user.id, self.clock.elapsed()))

    def reconcile(self, t: float | None = None) -> int:
        """Run one reconciliation tick.

        Returns:
            The target concurrency used for this tick
        """
        if t is None:
            t = self.clock.elapsed()

        self._reap()
        target = self.scheduler.target_at(t)
        active = [user for user in self._members.values() if not user.retiring]

        if target > len(active):
            for _ in range(target - len(active)):
                self._spawn(t)
        elif target < len(active):
            for user in active[: len(active) - target]:
                self._retire(user)

        if self._on_tick is not None:
            self._on_tick(self.active_count, self.member_count)
        return target

    def _spawn(self, t: float) -> VirtualUser:
        user = VirtualUser(next(self._ids), started_at=t)
        user.task = asyncio.create_task(self._run_user(user), name=f"vu-{user.id}")
        self._members[user.id] = user
        self._spawned_total += 1
        self._emit(LifecycleKind.SPAWNED, user)
        return user

    def _retire(self, user: VirtualUser) -> None:
        if user.retiring:
            return
        user.mark_retiring()
        self._emit(LifecycleKind.RETIRING, user)

    def _reap(self) -> None:
        for user in list(self._members.values()):
            if user.finished:
                del self._members[user.id]
                self._emit(LifecycleKind.RETIRED, user)

    async def _run_user(self, user: VirtualUser) -> None:
        vu_id_var.set(str(user.id))
        try:
            await self._user_loop(user)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Virtual user {user.id} stopped unexpectedly")
        finally:
            user.mark_idle()

    async def run(self, cancel: asyncio.Event | None = None) -> None:
        """Reconcile until the schedule completes or ``cancel`` is set."""
        cancel = cancel or asyncio.Event()
        if not self.clock.started:
            self.clock.start()

        logger.info(
            f"Virtual user pool started: {len(self.scheduler.stages)} stage(s), "
            f"{self.scheduler.total_duration:.1f}s, peak {self.scheduler.peak_target} users"
        )

        current_stage: int | None = None
        next_tick = 0.0
        try:
            while not cancel.is_set():
                t = self.clock.elapsed()
                if self.scheduler.is_complete(t):
                    logger.info("All stages complete")
                    break

                stage = self.scheduler.stage_index_at(t)
                if stage != current_stage:
                    logger.info(f"Entering stage {stage} at {t:.1f}s")
                    current_stage = stage

                self.reconcile(t)

                next_tick += self.reconcile_interval
                delay = max(0.0, next_tick - self.clock.elapsed())
                try:
                    await asyncio.wait_for(cancel.wait(), timeout=delay)
                except TimeoutError:
                    pass
            else:
                logger.info("Run cancelled; retiring all virtual users")
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Retire everyone and wait up to ``graceful_stop`` for them to exit."""
        for user in self._members.values():
            self._retire(user)

        tasks = [user.task for user in self._members.values() if user.task is not None]
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self.graceful_stop)
            if pending:
                logger.warning(
                    f"Graceful stop ({self.graceful_stop}s) exceeded; "
                    f"cancelling {len(pending)} virtual user(s)"
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        self._reap()
        if self._on_tick is not None:
            self._on_tick(self.active_count, self.member_count)
        logger.info(f"Virtual user pool stopped ({self._spawned_total} users spawned)")
