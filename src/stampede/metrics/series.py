"""Metric series and their immutable snapshots.

Four kinds of series, matching what load test thresholds are written against:

- Trend: distribution of values (latencies) - avg, min, max, med, p(N)
- Rate: fraction of true samples - rate, passes, fails
- Counter: monotonically increasing count - count, rate (per second)
- Gauge: last observed value - value, min, max

Series are mutated only by the collector's writer task. Snapshots are
copies and never change after creation.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from types import MappingProxyType

from stampede.metrics.quantiles import QuantileEstimator

_PERCENTILE = re.compile(r"^p\((\d+(?:\.\d+)?)\)$")


class MetricKind(str, Enum):
    """Kind of metric series."""

    TREND = "trend"
    RATE = "rate"
    COUNTER = "counter"
    GAUGE = "gauge"


# Aggregations that thresholds may reference, per kind (p(N) handled separately)
AGGREGATIONS: dict[MetricKind, frozenset[str]] = {
    MetricKind.TREND: frozenset({"count", "avg", "min", "max", "med"}),
    MetricKind.RATE: frozenset({"rate", "passes", "fails", "count"}),
    MetricKind.COUNTER: frozenset({"count", "rate"}),
    MetricKind.GAUGE: frozenset({"value", "min", "max"}),
}


def parse_percentile(aggregation: str) -> float | None:
    """Return N for ``"p(N)"`` or None if the aggregation is not a percentile."""
    match = _PERCENTILE.match(aggregation)
    return float(match.group(1)) if match else None


def supports_aggregation(kind: MetricKind, aggregation: str) -> bool:
    if kind is MetricKind.TREND:
        p = parse_percentile(aggregation)
        if p is not None:
            return 0 <= p <= 100
    return aggregation in AGGREGATIONS[kind]


@dataclass(frozen=True)
class MetricSnapshot:
    """Point-in-time copy of one series."""

    name: str
    kind: MetricKind
    count: int
    values: Mapping[str, float]
    _quantiles: QuantileEstimator | None = field(default=None, repr=False, compare=False)

    def aggregate(self, aggregation: str) -> float | None:
        """Value of an aggregation, or None when there are no samples."""
        if self.count == 0:
            return None
        p = parse_percentile(aggregation)
        if p is not None:
            if self._quantiles is None:
                raise KeyError(aggregation)
            return self._quantiles.percentile(p)
        return self.values[aggregation]


class TrendSeries:
    def __init__(self, name: str, quantiles: QuantileEstimator) -> None:
        self.name = name
        self.count = 0
        # exact sum keeps avg independent of ingestion order
        self.sum = Fraction(0)
        self.min = math.inf
        self.max = -math.inf
        self._quantiles = quantiles

    def add(self, value: float) -> None:
        self.count += 1
        self.sum += Fraction(value)
        self.min = min(self.min, value)
        self.max = max(self.max, value)
        self._quantiles.add(value)

    def snapshot(self, elapsed: float = 0.0) -> MetricSnapshot:
        values: dict[str, float] = {"count": float(self.count)}
        if self.count:
            values.update(
                avg=float(self.sum / self.count),
                min=self.min,
                max=self.max,
                med=self._quantiles.percentile(50),
                **{
                    "p(90)": self._quantiles.percentile(90),
                    "p(95)": self._quantiles.percentile(95),
                    "p(99)": self._quantiles.percentile(99),
                },
            )
        return MetricSnapshot(
            self.name,
            MetricKind.TREND,
            self.count,
            MappingProxyType(values),
            self._quantiles.copy(),
        )


class RateSeries:
    def __init__(self, name: str) -> None:
        self.name = name
        self.passes = 0
        self.count = 0

    def add(self, value: bool) -> None:
        self.count += 1
        if value:
            self.passes += 1

    def snapshot(self, elapsed: float = 0.0) -> MetricSnapshot:
        values = {
            "count": float(self.count),
            "passes": float(self.passes),
            "fails": float(self.count - self.passes),
        }
        if self.count:
            values["rate"] = self.passes / self.count
        return MetricSnapshot(self.name, MetricKind.RATE, self.count, MappingProxyType(values))


class CounterSeries:
    def __init__(self, name: str) -> None:
        self.name = name
        self.total = 0.0
        self.count = 0

    def add(self, value: float = 1.0) -> None:
        self.count += 1
        self.total += value

    def snapshot(self, elapsed: float = 0.0) -> MetricSnapshot:
        values = {
            "count": self.total,
            "rate": self.total / elapsed if elapsed > 0 else 0.0,
        }
        return MetricSnapshot(self.name, MetricKind.COUNTER, self.count, MappingProxyType(values))


class GaugeSeries:
    def __init__(self, name: str) -> None:
        self.name = name
        self.value = 0.0
        self.min = math.inf
        self.max = -math.inf
        self.count = 0

    def add(self, value: float) -> None:
        self.count += 1
        self.value = value
        self.min = min(self.min, value)
        self.max = max(self.max, value)

    def snapshot(self, elapsed: float = 0.0) -> MetricSnapshot:
        values: dict[str, float] = {}
        if self.count:
            values = {"value": self.value, "min": self.min, "max": self.max}
        return MetricSnapshot(self.name, MetricKind.GAUGE, self.count, MappingProxyType(values))


Series = TrendSeries | RateSeries | CounterSeries | GaugeSeries
