"""Built-in scenarios.

Four standard shapes against a service exposing ``/``, ``/health`` and
``/api/users``:

- baseline: steady 10 users, strict latency and error budgets
- stress: three ramps up to 150 users to find the breaking point
- spike: sudden jump from 10 to 200 users and back
- soak: 30 users for 30 minutes to surface leaks and drift

Usage:
    scenario = get_preset("baseline")
"""

from __future__ import annotations

from typing import Any

from stampede.core.definition import ScenarioDefinition
from stampede.core.loader import scenario_from_dict
from stampede.errors import ConfigurationError


def _ok(name: str) -> dict[str, Any]:
    return {"kind": "status", "status": 200, "name": name}


PRESETS: dict[str, dict[str, Any]] = {
    "baseline": {
        "name": "baseline",
        "description": "Steady load at 10 users",
        "stages": [
            {"duration": "1m", "target": 10},
            {"duration": "3m", "target": 10},
            {"duration": "1m", "target": 0},
        ],
        "steps": [
            {
                "type": "request",
                "path": "/",
                "checks": [
                    _ok("status is 200"),
                    {"kind": "json_present", "path": "service", "name": "response has service"},
                ],
            },
            {"type": "sleep", "duration": "1s"},
            {
                "type": "request",
                "path": "/health",
                "checks": [
                    _ok("health check is 200"),
                    {
                        "kind": "json_equals",
                        "path": "status",
                        "value": "healthy",
                        "name": "health status is healthy",
                    },
                ],
            },
            {"type": "sleep", "duration": "1s"},
            {
                "type": "request",
                "path": "/api/users",
                "checks": [
                    _ok("api status is 200"),
                    {"kind": "json_is_array", "path": "users", "name": "api has users array"},
                ],
            },
            {"type": "sleep", "duration": "1s"},
        ],
        "thresholds": {
            "http_req_duration": ["p(95)<500"],
            "http_req_failed": ["rate<0.05"],
            "errors": ["rate<0.05"],
        },
    },
    "stress": {
        "name": "stress",
        "description": "Gradual ramps to 150 users to find the breaking point",
        "stages": [
            {"duration": "2m", "target": 50},
            {"duration": "5m", "target": 50},
            {"duration": "2m", "target": 100},
            {"duration": "5m", "target": 100},
            {"duration": "2m", "target": 150},
            {"duration": "5m", "target": 150},
            {"duration": "2m", "target": 0},
        ],
        "steps": [
            {
                "type": "batch",
                "requests": [
                    {
                        "path": path,
                        "checks": [{"kind": "status_range", "min": 200, "max": 299}],
                    }
                    for path in ("/", "/health", "/ready", "/api/users")
                ],
            },
            {"type": "sleep", "duration": "500ms"},
        ],
        "thresholds": {
            "http_req_duration": ["p(95)<1000"],
            "http_req_failed": ["rate<0.10"],
            "errors": ["rate<0.10"],
        },
    },
    "spike": {
        "name": "spike",
        "description": "Sudden spike from 10 to 200 users",
        "stages": [
            {"duration": "30s", "target": 10},
            {"duration": "1m", "target": 200},
            {"duration": "3m", "target": 200},
            {"duration": "30s", "target": 10},
            {"duration": "1m", "target": 10},
            {"duration": "30s", "target": 0},
        ],
        "steps": [
            {
                "type": "request",
                "paths": ["/", "/health", "/api/users"],
                "checks": [{"kind": "status_range", "min": 200, "max": 299}],
            },
            {"type": "sleep", "duration": "300ms"},
        ],
        "thresholds": {
            "http_req_duration": ["p(95)<2000"],
            "http_req_failed": ["rate<0.15"],
            "errors": ["rate<0.15"],
        },
    },
    "soak": {
        "name": "soak",
        "description": "30 users held for 30 minutes",
        "stages": [
            {"duration": "2m", "target": 30},
            {"duration": "30m", "target": 30},
            {"duration": "2m", "target": 0},
        ],
        "steps": [
            {"type": "request", "path": "/", "checks": [_ok("home status is 200")]},
            {"type": "sleep", "duration": "2s"},
            {"type": "request", "path": "/api/users", "checks": [_ok("api status is 200")]},
            {"type": "sleep", "duration": "3s"},
            {"type": "request", "path": "/health", "checks": [_ok("health status is 200")]},
            {"type": "sleep", "duration": "2s"},
        ],
        "thresholds": {
            "http_req_duration": ["p(95)<600"],
            "http_req_failed": ["rate<0.05"],
            "errors": ["rate<0.05"],
        },
    },
}


def preset_names() -> list[str]:
    return sorted(PRESETS)


def get_preset(name: str) -> ScenarioDefinition:
    """Return a validated copy of a built-in scenario.

    Raises:
        ConfigurationError: If no preset has that name
    """
    data = PRESETS.get(name)
    if data is None:
        raise ConfigurationError(
            f"Unknown preset: {name} (available: {', '.join(preset_names())})"
        )
    return scenario_from_dict(data, source=f"preset:{name}")
