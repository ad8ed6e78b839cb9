"""Tests for percentile estimators."""

import random

import pytest

from stampede.metrics.quantiles import (
    ExactQuantiles,
    LogHistogramQuantiles,
    create_estimator,
)


class TestExactQuantiles:
    """Tests for the sorted-list estimator."""

    def test_interpolates_between_ranks(self) -> None:
        """Percentiles interpolate linearly between neighbouring samples."""
        q = ExactQuantiles()
        for value in (10, 20, 30, 40):
            q.add(value)

        assert q.percentile(0) == 10
        assert q.percentile(100) == 40
        assert q.percentile(50) == pytest.approx(25)

    def test_single_sample(self) -> None:
        """Any percentile of one sample is that sample."""
        q = ExactQuantiles()
        q.add(42.0)

        assert q.percentile(1) == 42.0
        assert q.percentile(99) == 42.0

    def test_empty_raises(self) -> None:
        """Asking an empty estimator is an error."""
        with pytest.raises(ValueError):
            ExactQuantiles().percentile(50)

    @pytest.mark.parametrize("p", [-1, 100.5])
    def test_rejects_out_of_range(self, p: float) -> None:
        """Percentiles must be within [0, 100]."""
        q = ExactQuantiles()
        q.add(1.0)
        with pytest.raises(ValueError):
            q.percentile(p)

    def test_copy_is_independent(self) -> None:
        """A copy does not see later samples."""
        q = ExactQuantiles()
        q.add(1.0)
        clone = q.copy()
        q.add(100.0)

        assert clone.count == 1
        assert clone.percentile(100) == 1.0


class TestLogHistogramQuantiles:
    """Tests for the bounded-error sketch."""

    @pytest.mark.parametrize("accuracy", [0.01, 0.05])
    def test_relative_error_bound(self, accuracy: float) -> None:
        """Every percentile is within the configured relative accuracy."""
        rng = random.Random(7)
        values = [rng.lognormvariate(4.5, 0.8) for _ in range(5000)]
        sketch = LogHistogramQuantiles(relative_accuracy=accuracy)
        for value in values:
            sketch.add(value)

        ordered = sorted(values)
        for p in (1, 10, 50, 90, 95, 99, 99.9):
            rank = int(p / 100 * (len(ordered) - 1))
            expected = ordered[rank]
            assert abs(sketch.percentile(p) - expected) <= accuracy * expected + 1e-9

    def test_extremes_stay_in_range(self) -> None:
        """p0 and p100 never fall outside the observed range."""
        sketch = LogHistogramQuantiles()
        for value in (3.0, 5.0, 900.0):
            sketch.add(value)

        assert 3.0 <= sketch.percentile(0) <= 3.0 * 1.01
        assert 900.0 * 0.99 <= sketch.percentile(100) <= 900.0

    def test_zero_values(self) -> None:
        """Zero latencies land in the zero bucket."""
        sketch = LogHistogramQuantiles()
        for value in (0.0, 0.0, 0.0, 10.0):
            sketch.add(value)

        assert sketch.percentile(50) == 0.0
        assert sketch.percentile(100) == pytest.approx(10.0, rel=0.01)

    def test_order_independent(self) -> None:
        """The same samples in any order give the same answers."""
        values = [float(v) for v in range(1, 500)]
        shuffled = values[:]
        random.Random(3).shuffle(shuffled)

        a = LogHistogramQuantiles()
        b = LogHistogramQuantiles()
        for value in values:
            a.add(value)
        for value in shuffled:
            b.add(value)

        for p in (5, 50, 95, 99):
            assert a.percentile(p) == b.percentile(p)

    @pytest.mark.parametrize("accuracy", [0, 1, -0.1])
    def test_rejects_bad_accuracy(self, accuracy: float) -> None:
        """Relative accuracy must be strictly between 0 and 1."""
        with pytest.raises(ValueError):
            LogHistogramQuantiles(relative_accuracy=accuracy)


class TestCreateEstimator:
    """Tests for the estimator factory."""

    def test_modes(self) -> None:
        """Both configured modes build the right structure."""
        assert isinstance(create_estimator("exact"), ExactQuantiles)
        sketch = create_estimator("sketch", 0.02)
        assert isinstance(sketch, LogHistogramQuantiles)
        assert sketch.relative_accuracy == 0.02

    def test_unknown_mode(self) -> None:
        """Unknown modes are rejected."""
        with pytest.raises(ValueError):
            create_estimator("magic")
