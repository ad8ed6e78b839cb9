"""Staged virtual-user load generation.

Provides:
- StageScheduler: ramp/hold stages to a target concurrency curve
- VirtualUserPool: spawns and retires users to follow the curve
- ScenarioRunner: the per-user request/check/think loop
- LoadTestRun: orchestration, cancellation and summary

Example:
    from stampede.engine import LoadTestRun, RunOptions

    run = LoadTestRun(scenario, RunOptions(base_url="http://localhost:8080"))
    summary = await run.run()
"""

from stampede.engine.checks import (
    Check,
    build_check,
    json_field_equals,
    json_field_is_array,
    json_field_present,
    status_in_range,
    status_is,
)
from stampede.engine.orchestrator import LoadTestRun, RunOptions
from stampede.engine.pool import (
    LifecycleEvent,
    LifecycleKind,
    UserState,
    VirtualUser,
    VirtualUserPool,
)
from stampede.engine.runner import BatchStep, RequestStep, ScenarioRunner, ThinkStep
from stampede.engine.stages import Stage, StageScheduler

__all__ = [
    # Stages
    "Stage",
    "StageScheduler",
    # Pool
    "LifecycleEvent",
    "LifecycleKind",
    "UserState",
    "VirtualUser",
    "VirtualUserPool",
    # Runner
    "BatchStep",
    "RequestStep",
    "ScenarioRunner",
    "ThinkStep",
    # Checks
    "Check",
    "build_check",
    "json_field_equals",
    "json_field_is_array",
    "json_field_present",
    "status_in_range",
    "status_is",
    # Orchestration
    "LoadTestRun",
    "RunOptions",
]
