"""Prometheus exposition of final run aggregates.

Renders a metrics snapshot (and optionally the threshold verdict) in the
Prometheus text format, for node_exporter's textfile collector or a
Pushgateway sidecar.

Usage:
    from stampede.metrics.exporter import write_textfile

    write_textfile("/var/lib/node_exporter/stampede.prom", snapshot, verdict)
"""

from __future__ import annotations

import logging
from pathlib import Path

from prometheus_client import CollectorRegistry, Gauge, generate_latest, write_to_textfile

from stampede.metrics.collector import MetricsSnapshot, split_tagged_name
from stampede.metrics.thresholds import Verdict

logger = logging.getLogger(__name__)

NAMESPACE = "stampede"


def build_registry(
    snapshot: MetricsSnapshot,
    verdict: Verdict | None = None,
    scenario: str = "",
) -> CollectorRegistry:
    """Build a fresh registry holding the snapshot as gauges."""
    registry = CollectorRegistry()
    gauges: dict[str, Gauge] = {}

    for name, metric in snapshot.metrics.items():
        base, endpoint = split_tagged_name(name)
        gauge = gauges.get(base)
        if gauge is None:
            gauge = Gauge(
                f"{NAMESPACE}_{base}",
                f"Load test {metric.kind.value} metric {base}",
                ["scenario", "aggregation", "endpoint"],
                registry=registry,
            )
            gauges[base] = gauge
        for aggregation, value in metric.values.items():
            gauge.labels(
                scenario=scenario, aggregation=aggregation, endpoint=endpoint or ""
            ).set(value)

    if verdict is not None:
        passed = Gauge(
            f"{NAMESPACE}_threshold_passed",
            "1 if the threshold passed, 0 otherwise",
            ["scenario", "threshold", "reason"],
            registry=registry,
        )
        for result in verdict.results:
            passed.labels(
                scenario=scenario,
                threshold=result.threshold_name,
                reason=result.reason_code.value,
            ).set(1 if result.passed else 0)

        Gauge(
            f"{NAMESPACE}_run_passed",
            "1 if every threshold passed",
            ["scenario"],
            registry=registry,
        ).labels(scenario=scenario).set(1 if verdict.all_passed else 0)

    return registry


def render(snapshot: MetricsSnapshot, verdict: Verdict | None = None, scenario: str = "") -> bytes:
    """Render the snapshot in Prometheus text exposition format."""
    return generate_latest(build_registry(snapshot, verdict, scenario))


def write_textfile(
    path: str | Path,
    snapshot: MetricsSnapshot,
    verdict: Verdict | None = None,
    scenario: str = "",
) -> None:
    """Atomically write the snapshot to a Prometheus textfile."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    write_to_textfile(str(path), build_registry(snapshot, verdict, scenario))
    logger.info(f"Prometheus metrics written to {path}")
