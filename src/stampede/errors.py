"""Exception hierarchy for Stampede.

Only configuration problems are raised to the caller; request and check
failures are recorded as metrics and never abort a run.
"""

from __future__ import annotations


class StampedeError(Exception):
    """Base exception for all Stampede errors."""


class ConfigurationError(StampedeError):
    """Raised when a scenario cannot be run as configured.

    Always raised before the first virtual user is spawned.
    """


class DurationSyntaxError(ConfigurationError):
    """Raised for an unparseable duration string such as ``"2x"``."""

    def __init__(self, value: str) -> None:
        self.value = value
        super().__init__(
            f"Invalid duration: {value!r} (expected e.g. '500ms', '30s', '2m', '1h30m')"
        )


class ThresholdSyntaxError(ConfigurationError):
    """Raised for a threshold expression that cannot be parsed."""

    def __init__(self, metric_name: str, expression: str, reason: str = "") -> None:
        self.metric_name = metric_name
        self.expression = expression
        detail = f": {reason}" if reason else ""
        super().__init__(f"Invalid threshold for {metric_name}: {expression!r}{detail}")


class UnknownMetricError(ConfigurationError):
    """Raised when a threshold references a metric that is never produced."""

    def __init__(self, metric_name: str) -> None:
        self.metric_name = metric_name
        super().__init__(f"Threshold references unknown metric: {metric_name}")
