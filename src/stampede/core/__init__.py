"""Scenario configuration: durations, definitions, loading and the run clock."""

from stampede.core.clock import ManualClock, RunClock
from stampede.core.definition import (
    BatchSpec,
    CheckSpec,
    RequestSpec,
    ScenarioDefinition,
    SleepSpec,
    StageSpec,
    ThresholdSpec,
)
from stampede.core.durations import format_duration, parse_duration
from stampede.core.loader import load_scenario, scenario_from_dict

__all__ = [
    "BatchSpec",
    "CheckSpec",
    "ManualClock",
    "RequestSpec",
    "RunClock",
    "ScenarioDefinition",
    "SleepSpec",
    "StageSpec",
    "ThresholdSpec",
    "format_duration",
    "load_scenario",
    "parse_duration",
    "scenario_from_dict",
]
