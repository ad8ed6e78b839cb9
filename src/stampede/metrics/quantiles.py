"""Percentile estimators for trend metrics.

Two interchangeable structures:

- ExactQuantiles: keeps every sample in a sorted list. Zero error, memory
  grows with the sample count. Right for bounded test-scale runs.
- LogHistogramQuantiles: log-bucketed histogram (DDSketch style). Any
  reported percentile is within ``relative_accuracy`` (default 1%) of the
  sample at that rank. Memory grows with log(max/min) / accuracy, not with
  the sample count. Right for long soak runs.

Both are order independent: the same multiset of samples always gives the
same answers.
"""

from __future__ import annotations

import bisect
import math
from abc import ABC, abstractmethod
from collections import Counter


class QuantileEstimator(ABC):
    """Interface shared by the percentile structures."""

    @property
    @abstractmethod
    def count(self) -> int:
        pass

    @abstractmethod
    def add(self, value: float) -> None:
        pass

    @abstractmethod
    def percentile(self, p: float) -> float:
        """Value at percentile ``p`` (0-100). Raises ValueError when empty."""
        pass

    @abstractmethod
    def copy(self) -> QuantileEstimator:
        pass


def _check_percentile(p: float) -> None:
    if not 0 <= p <= 100:
        raise ValueError(f"Percentile must be within [0, 100], got {p}")


class ExactQuantiles(QuantileEstimator):
    """Sorted-list percentiles with linear interpolation between ranks."""

    def __init__(self) -> None:
        self._values: list[float] = []

    @property
    def count(self) -> int:
        return len(self._values)

    def add(self, value: float) -> None:
        bisect.insort(self._values, value)

    def percentile(self, p: float) -> float:
        _check_percentile(p)
        if not self._values:
            raise ValueError("No samples")

        k = (len(self._values) - 1) * (p / 100.0)
        lower = math.floor(k)
        upper = math.ceil(k)
        if lower == upper:
            return self._values[int(k)]
        return self._values[lower] * (upper - k) + self._values[upper] * (k - lower)

    def copy(self) -> ExactQuantiles:
        clone = ExactQuantiles()
        clone._values = list(self._values)
        return clone


class LogHistogramQuantiles(QuantileEstimator):
    """Streaming percentiles with bounded relative error.

    Bucket ``i`` holds values in ``(gamma**(i-1), gamma**i]`` where
    ``gamma = (1 + a) / (1 - a)``; the bucket's representative value
    ``2 * gamma**i / (gamma + 1)`` is within ``a`` of everything in it.
    Non-positive values share a dedicated zero bucket.
    """

    MIN_POSITIVE = 1e-9

    def __init__(self, relative_accuracy: float = 0.01) -> None:
        if not 0 < relative_accuracy < 1:
            raise ValueError(f"relative_accuracy must be within (0, 1), got {relative_accuracy}")
        self.relative_accuracy = relative_accuracy
        self._gamma = (1 + relative_accuracy) / (1 - relative_accuracy)
        self._log_gamma = math.log(self._gamma)
        self._buckets: Counter[int] = Counter()
        self._zero_count = 0
        self._count = 0
        self._min = math.inf
        self._max = -math.inf

    @property
    def count(self) -> int:
        return self._count

    def add(self, value: float) -> None:
        self._count += 1
        self._min = min(self._min, value)
        self._max = max(self._max, value)
        if value < self.MIN_POSITIVE:
            self._zero_count += 1
        else:
            self._buckets[math.ceil(math.log(value) / self._log_gamma)] += 1

    def _bucket_value(self, index: int) -> float:
        return 2 * self._gamma**index / (self._gamma + 1)

    def percentile(self, p: float) -> float:
        _check_percentile(p)
        if self._count == 0:
            raise ValueError("No samples")

        rank = (p / 100.0) * (self._count - 1)
        seen = self._zero_count
        if rank < seen:
            return min(self._min, 0.0)

        for index in sorted(self._buckets):
            seen += self._buckets[index]
            if rank < seen:
                return min(max(self._bucket_value(index), self._min), self._max)

        return self._max

    def copy(self) -> LogHistogramQuantiles:
        clone = LogHistogramQuantiles(self.relative_accuracy)
        clone._buckets = Counter(self._buckets)
        clone._zero_count = self._zero_count
        clone._count = self._count
        clone._min = self._min
        clone._max = self._max
        return clone


def create_estimator(mode: str, relative_accuracy: float = 0.01) -> QuantileEstimator:
    """Build the estimator selected by the ``quantile_mode`` setting."""
    if mode == "exact":
        return ExactQuantiles()
    if mode == "sketch":
        return LogHistogramQuantiles(relative_accuracy)
    raise ValueError(f"Unknown quantile mode: {mode}")
