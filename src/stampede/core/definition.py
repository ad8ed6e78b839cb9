"""Scenario definition models.

A scenario is plain JSON configuration:

    {
        "name": "baseline",
        "stages": [
            {"duration": "1m", "target": 10},
            {"duration": "3m", "target": 10},
            {"duration": "1m", "target": 0}
        ],
        "steps": [
            {"type": "request", "method": "GET", "path": "/health",
             "checks": [{"kind": "status", "status": 200}]},
            {"type": "sleep", "duration": "1s"}
        ],
        "thresholds": {
            "http_req_duration": ["p(95)<500"],
            "http_req_failed": [{"threshold": "rate<0.05", "abort_on_fail": true}]
        }
    }

Durations accept ``"500ms"``, ``"30s"``, ``"2m"``, ``"1h30m"`` or seconds.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, Field, field_validator, model_validator

from stampede.core.durations import parse_duration
from stampede.errors import DurationSyntaxError


def _duration(value: Any) -> float:
    if not isinstance(value, (str, int, float)):
        raise ValueError(f"Invalid duration: {value!r}")
    try:
        return parse_duration(value)
    except DurationSyntaxError as e:
        raise ValueError(str(e)) from None


Duration = Annotated[float, BeforeValidator(_duration)]


class StageSpec(BaseModel):
    """One stage of the concurrency curve."""

    model_config = {"extra": "forbid"}

    duration: Duration
    target: int = Field(ge=0)


CheckKind = Literal["status", "status_range", "json_present", "json_equals", "json_is_array"]


class CheckSpec(BaseModel):
    """A named response check.

    Kinds and their parameters:
    - status: ``status``
    - status_range: ``min``, ``max`` (inclusive)
    - json_present / json_is_array: ``path``
    - json_equals: ``path``, ``value``
    """

    model_config = {"extra": "forbid"}

    kind: CheckKind
    name: str | None = None
    status: int | None = None
    min: int | None = None
    max: int | None = None
    path: str | None = None
    value: Any = None

    @model_validator(mode="after")
    def _require_parameters(self) -> CheckSpec:
        if self.kind == "status" and self.status is None:
            raise ValueError("'status' check requires 'status'")
        if self.kind == "status_range":
            if self.min is None or self.max is None:
                raise ValueError("'status_range' check requires 'min' and 'max'")
            if self.min > self.max:
                raise ValueError("'status_range' min must not exceed max")
        if self.kind.startswith("json_") and not self.path:
            raise ValueError(f"'{self.kind}' check requires 'path'")
        if self.kind == "json_equals" and "value" not in self.model_fields_set:
            raise ValueError("'json_equals' check requires 'value'")
        return self


class RequestSpec(BaseModel):
    """A request step. ``paths`` makes the endpoint a random pick per iteration."""

    model_config = {"extra": "forbid"}

    type: Literal["request"] = "request"
    method: str = "GET"
    path: str | None = None
    paths: list[str] | None = None
    name: str | None = None
    checks: list[CheckSpec] = Field(default_factory=list)
    headers: dict[str, str] | None = None
    body: str | None = None

    @field_validator("headers")
    @classmethod
    def _ascii_headers(cls, headers: dict[str, str] | None) -> dict[str, str] | None:
        # HTTP/1.1 header values must be encodable as ASCII
        for key, value in (headers or {}).items():
            if not (key.isascii() and value.isascii()):
                raise ValueError(f"header {key!r} must contain only ASCII characters")
        return headers

    @model_validator(mode="after")
    def _one_endpoint_source(self) -> RequestSpec:
        if (self.path is None) == (self.paths is None):
            raise ValueError("request step requires exactly one of 'path' or 'paths'")
        if self.paths is not None and not self.paths:
            raise ValueError("'paths' must not be empty")
        self.method = self.method.upper()
        return self

    @property
    def endpoints(self) -> tuple[str, ...]:
        return (self.path,) if self.path is not None else tuple(self.paths or ())


class BatchSpec(BaseModel):
    """Requests issued concurrently as one step."""

    model_config = {"extra": "forbid"}

    type: Literal["batch"]
    requests: list[RequestSpec] = Field(min_length=1)


class SleepSpec(BaseModel):
    """Think time between steps."""

    model_config = {"extra": "forbid"}

    type: Literal["sleep"]
    duration: Duration


StepSpec = Annotated[RequestSpec | BatchSpec | SleepSpec, Field(discriminator="type")]


class ThresholdSpec(BaseModel):
    """Threshold with options; a bare string is shorthand for ``{"threshold": ...}``."""

    model_config = {"extra": "forbid"}

    threshold: str
    abort_on_fail: bool = False
    delay_abort_eval: Duration = 0.0
    min_samples: int = Field(default=1, ge=1)


class ScenarioDefinition(BaseModel):
    """Complete, validated scenario."""

    model_config = {"extra": "forbid"}

    name: str = "scenario"
    description: str = ""
    base_url: str | None = None
    start_target: int = Field(default=0, ge=0)
    stages: list[StageSpec] = Field(min_length=1)
    steps: list[StepSpec] = Field(min_length=1)
    thresholds: dict[str, list[str | ThresholdSpec]] = Field(default_factory=dict)
    request_timeout: Duration | None = None
    graceful_stop: Duration | None = None
    seed: int | None = None

    @model_validator(mode="after")
    def _has_running_stage(self) -> ScenarioDefinition:
        if all(stage.duration == 0 for stage in self.stages):
            raise ValueError("at least one stage must have a non-zero duration")
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        return self

    def threshold_specs(self) -> list[tuple[str, ThresholdSpec]]:
        """Thresholds normalised to ``(metric, ThresholdSpec)`` pairs."""
        pairs = []
        for metric, entries in self.thresholds.items():
            for entry in entries:
                spec = ThresholdSpec(threshold=entry) if isinstance(entry, str) else entry
                pairs.append((metric, spec))
        return pairs
