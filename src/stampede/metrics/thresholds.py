"""Pass/fail thresholds over aggregated metrics.

Threshold expressions use the familiar load-testing syntax:

- ``p(95)<500``   95th percentile of a trend below 500
- ``rate<0.05``   fraction of true samples of a rate below 5%
- ``avg<=200``, ``max<1000``, ``med<100``, ``count>10``, ``value>0``

Operators: ``<``, ``<=``, ``>``, ``>=``, ``==``, ``!=``.

A threshold whose metric has no samples (or fewer than ``min_samples``) is
INDETERMINATE and counts as failed: a run that never exercised a metric
must not report it as healthy.

Example:
    thresholds = parse_thresholds({"http_req_duration": ["p(95)<500"]})
    evaluator = ThresholdEvaluator(thresholds)
    evaluator.validate()
    verdict = evaluator.evaluate(collector.snapshot())
    verdict.all_passed
"""

from __future__ import annotations

import logging
import operator
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

from stampede.errors import ThresholdSyntaxError, UnknownMetricError
from stampede.metrics.collector import (
    BUILTIN_METRICS,
    TAGGED_METRICS,
    MetricsSnapshot,
    split_tagged_name,
)
from stampede.metrics.series import supports_aggregation

logger = logging.getLogger(__name__)

_EXPRESSION = re.compile(
    r"^\s*(?P<agg>[a-z]+|p\(\s*\d+(?:\.\d+)?\s*\))\s*"
    r"(?P<op><=|>=|==|!=|<|>)\s*"
    r"(?P<bound>-?\d+(?:\.\d+)?(?:[eE]-?\d+)?)\s*$"
)

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}


class ReasonCode(str, Enum):
    """Why a threshold passed or failed."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    INDETERMINATE = "INDETERMINATE"


@dataclass(frozen=True)
class Threshold:
    """One pass/fail condition on one metric."""

    metric_name: str
    expression: str
    aggregation: str
    op: str
    bound: float
    min_samples: int = 1
    abort_on_fail: bool = False
    abort_delay: float = 0.0

    @property
    def name(self) -> str:
        return f"{self.metric_name}: {self.expression}"

    def predicate(self, value: float) -> bool:
        return _OPERATORS[self.op](value, self.bound)


@dataclass(frozen=True)
class ThresholdResult:
    """Outcome of evaluating one threshold."""

    threshold_name: str
    metric_name: str
    passed: bool
    observed_value: float | None
    reason_code: ReasonCode


@dataclass(frozen=True)
class Verdict:
    """Results for every threshold plus the overall outcome."""

    results: tuple[ThresholdResult, ...]

    @property
    def all_passed(self) -> bool:
        return all(result.passed for result in self.results)

    @property
    def failed(self) -> list[ThresholdResult]:
        return [result for result in self.results if not result.passed]


def parse_threshold(
    metric_name: str,
    expression: str,
    min_samples: int = 1,
    abort_on_fail: bool = False,
    abort_delay: float = 0.0,
) -> Threshold:
    """Parse a single threshold expression.

    Raises:
        ThresholdSyntaxError: If the expression cannot be parsed
    """
    match = _EXPRESSION.match(expression)
    if match is None:
        raise ThresholdSyntaxError(metric_name, expression)
    if min_samples < 1:
        raise ThresholdSyntaxError(metric_name, expression, "min_samples must be >= 1")

    return Threshold(
        metric_name=metric_name,
        expression=expression.strip(),
        aggregation=match.group("agg").replace(" ", ""),
        op=match.group("op"),
        bound=float(match.group("bound")),
        min_samples=min_samples,
        abort_on_fail=abort_on_fail,
        abort_delay=abort_delay,
    )


def parse_thresholds(config: Mapping[str, Iterable[str]]) -> list[Threshold]:
    """Parse a ``{metric: [expression, ...]}`` mapping."""
    return [
        parse_threshold(metric, expression)
        for metric, expressions in config.items()
        for expression in expressions
    ]


class ThresholdEvaluator:
    """Evaluates thresholds against metric snapshots."""

    def __init__(self, thresholds: Sequence[Threshold]) -> None:
        self.thresholds = tuple(thresholds)

    def validate(self) -> None:
        """Reject thresholds that can never be evaluated.

        Raises:
            UnknownMetricError: Metric is not produced by the engine
            ThresholdSyntaxError: Aggregation does not apply to the metric kind
        """
        for threshold in self.thresholds:
            base, endpoint = split_tagged_name(threshold.metric_name)
            kind = BUILTIN_METRICS.get(base)
            if kind is None or (endpoint is not None and base not in TAGGED_METRICS):
                raise UnknownMetricError(threshold.metric_name)
            if not supports_aggregation(kind, threshold.aggregation):
                raise ThresholdSyntaxError(
                    threshold.metric_name,
                    threshold.expression,
                    f"'{threshold.aggregation}' does not apply to a {kind.value} metric",
                )

    def evaluate_one(self, threshold: Threshold, snapshot: MetricsSnapshot) -> ThresholdResult:
        metric = snapshot.get(threshold.metric_name)
        if metric is None or metric.count < threshold.min_samples:
            return ThresholdResult(
                threshold_name=threshold.name,
                metric_name=threshold.metric_name,
                passed=False,
                observed_value=None,
                reason_code=ReasonCode.INDETERMINATE,
            )

        observed = metric.aggregate(threshold.aggregation)
        passed = observed is not None and threshold.predicate(observed)
        return ThresholdResult(
            threshold_name=threshold.name,
            metric_name=threshold.metric_name,
            passed=passed,
            observed_value=observed,
            reason_code=ReasonCode.PASSED if passed else ReasonCode.FAILED,
        )

    def evaluate(self, snapshot: MetricsSnapshot) -> Verdict:
        """Evaluate every threshold; none is ever omitted."""
        results = tuple(self.evaluate_one(threshold, snapshot) for threshold in self.thresholds)
        for result in results:
            if result.reason_code is ReasonCode.INDETERMINATE:
                logger.warning(f"Threshold indeterminate (no samples): {result.threshold_name}")
            elif not result.passed:
                logger.warning(
                    f"Threshold failed: {result.threshold_name} "
                    f"(observed {result.observed_value:.4g})"
                )
        return Verdict(results=results)

    def check_abort(self, snapshot: MetricsSnapshot) -> ThresholdResult | None:
        """First definite failure among ``abort_on_fail`` thresholds whose delay has passed."""
        for threshold in self.thresholds:
            if not threshold.abort_on_fail or snapshot.elapsed < threshold.abort_delay:
                continue
            result = self.evaluate_one(threshold, snapshot)
            if result.reason_code is ReasonCode.FAILED:
                return result
        return None
