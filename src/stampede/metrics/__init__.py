"""Metrics aggregation and threshold evaluation.

Provides:
- Outcome records produced by virtual users
- Single-writer collector with trend/rate/counter/gauge series
- Exact and streaming percentile estimators
- Threshold parsing and evaluation with an explicit INDETERMINATE state
- Prometheus textfile export of final aggregates
"""

from stampede.metrics.collector import (
    BUILTIN_METRICS,
    CheckTally,
    MetricsAggregator,
    MetricsCollector,
    MetricsSnapshot,
    tagged_name,
)
from stampede.metrics.outcomes import CheckResult, IterationOutcome, RequestOutcome
from stampede.metrics.quantiles import ExactQuantiles, LogHistogramQuantiles
from stampede.metrics.series import MetricKind, MetricSnapshot
from stampede.metrics.thresholds import (
    ReasonCode,
    Threshold,
    ThresholdEvaluator,
    ThresholdResult,
    Verdict,
    parse_threshold,
    parse_thresholds,
)

__all__ = [
    # Outcomes
    "CheckResult",
    "IterationOutcome",
    "RequestOutcome",
    # Collector
    "BUILTIN_METRICS",
    "CheckTally",
    "MetricsAggregator",
    "MetricsCollector",
    "MetricsSnapshot",
    "MetricKind",
    "MetricSnapshot",
    "tagged_name",
    # Quantiles
    "ExactQuantiles",
    "LogHistogramQuantiles",
    # Thresholds
    "ReasonCode",
    "Threshold",
    "ThresholdEvaluator",
    "ThresholdResult",
    "Verdict",
    "parse_threshold",
    "parse_thresholds",
]
