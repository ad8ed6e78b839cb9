"""Response checks.

A check is a named, pure predicate over a response. Checks never raise into
the scenario: a predicate that errors (bad JSON, missing field) simply fails.

Built-in factories:
- status_is(200)
- status_in_range(200, 299)
- json_field_present("service")
- json_field_equals("status", "healthy")
- json_field_is_array("users")
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from stampede.core.definition import CheckSpec
from stampede.errors import ConfigurationError
from stampede.metrics.outcomes import CheckResult
from stampede.transport.http import Response

logger = logging.getLogger(__name__)

Predicate = Callable[[Response], bool]

_MISSING = object()


@dataclass(frozen=True)
class Check:
    """A named pass/fail predicate."""

    name: str
    predicate: Predicate

    def evaluate(self, response: Response) -> CheckResult:
        try:
            passed = bool(self.predicate(response))
        except Exception as e:
            logger.debug(f"Check '{self.name}' errored: {e}")
            passed = False
        return CheckResult(name=self.name, passed=passed)


def run_checks(checks: Sequence[Check], response: Response) -> tuple[CheckResult, ...]:
    """Evaluate every check; all of them run even after a failure."""
    return tuple(check.evaluate(response) for check in checks)


def status_is(expected: int, name: str | None = None) -> Check:
    return Check(name or f"status is {expected}", lambda r: r.status == expected)


def status_in_range(low: int, high: int, name: str | None = None) -> Check:
    """Inclusive status range, e.g. ``status_in_range(200, 299)`` for 2xx."""
    if low == 200 and high == 299:
        default = "status is 2xx"
    else:
        default = f"status in {low}-{high}"
    return Check(name or default, lambda r: low <= r.status <= high)


def json_field_present(path: str, name: str | None = None) -> Check:
    def predicate(response: Response) -> bool:
        return response.json_path(path, default=_MISSING) is not _MISSING

    return Check(name or f"response has {path}", predicate)


def json_field_equals(path: str, expected: Any, name: str | None = None) -> Check:
    def predicate(response: Response) -> bool:
        return response.json_path(path, default=_MISSING) == expected

    return Check(name or f"{path} is {expected!r}", predicate)


def json_field_is_array(path: str, name: str | None = None) -> Check:
    def predicate(response: Response) -> bool:
        return isinstance(response.json_path(path, default=None), list)

    return Check(name or f"{path} is an array", predicate)


def build_check(spec: CheckSpec) -> Check:
    """Build a check from its scenario definition."""
    if spec.kind == "status":
        if spec.status is None:
            raise ConfigurationError("'status' check requires 'status'")
        return status_is(spec.status, spec.name)
    if spec.kind == "status_range":
        if spec.min is None or spec.max is None:
            raise ConfigurationError("'status_range' check requires 'min' and 'max'")
        return status_in_range(spec.min, spec.max, spec.name)

    if not spec.path:
        raise ConfigurationError(f"'{spec.kind}' check requires 'path'")
    if spec.kind == "json_present":
        return json_field_present(spec.path, spec.name)
    if spec.kind == "json_equals":
        return json_field_equals(spec.path, spec.value, spec.name)
    return json_field_is_array(spec.path, spec.name)
