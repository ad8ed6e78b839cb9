"""Tests for run summaries and report sinks."""

from datetime import UTC, datetime
from pathlib import Path

import orjson
import pytest

from stampede.metrics.collector import MetricsAggregator
from stampede.metrics.outcomes import CheckResult, RequestOutcome
from stampede.metrics.thresholds import ThresholdEvaluator, parse_thresholds
from stampede.summary import JsonFileSink, JsonStdoutSink, RunSummary, build_summary


@pytest.fixture
def summary() -> RunSummary:
    aggregator = MetricsAggregator()
    aggregator.add(
        RequestOutcome(
            endpoint="/health",
            status=200,
            latency_ms=120.0,
            checks_passed=True,
            timestamp=1.0,
            check_results=(CheckResult("status is 200", True),),
        )
    )
    snapshot = aggregator.snapshot(elapsed=15.0)
    verdict = ThresholdEvaluator(
        parse_thresholds({"http_req_duration": ["p(95)<500"], "iterations": ["count>0"]})
    ).evaluate(snapshot)
    return build_summary(
        run_id="abc123",
        scenario="smoke",
        base_url="http://svc",
        started_at=datetime(2026, 1, 1, tzinfo=UTC),
        snapshot=snapshot,
        verdict=verdict,
        completed=True,
        vus_spawned=2,
    )


class TestRunSummary:
    """Tests for the summary model."""

    def test_fields(self, summary: RunSummary) -> None:
        """The summary carries verdicts, aggregates and check tallies."""
        assert summary.duration_seconds == 15.0
        assert summary.all_passed is False
        assert [t.reason_code.value for t in summary.thresholds] == ["PASSED", "INDETERMINATE"]
        assert summary.metrics["http_req_duration"].values["avg"] == 120.0
        assert summary.checks["status is 200"].passes == 1

    def test_exit_code(self, summary: RunSummary) -> None:
        """The exit code is 0 only when every threshold passed."""
        assert summary.exit_code == 1
        assert summary.model_copy(update={"all_passed": True}).exit_code == 0

    def test_json(self, summary: RunSummary) -> None:
        """The JSON form decodes with the same content."""
        data = orjson.loads(summary.to_json())

        assert data["run_id"] == "abc123"
        assert data["thresholds"][1]["observed_value"] is None
        assert data["metrics"]["http_reqs"]["kind"] == "counter"


class TestSinks:
    """Tests for report sinks."""

    def test_stdout_sink(self, summary: RunSummary, capsysbinary) -> None:
        """The stdout sink writes the JSON document."""
        JsonStdoutSink().emit(summary)

        out = capsysbinary.readouterr().out
        assert orjson.loads(out)["scenario"] == "smoke"

    def test_file_sink(self, summary: RunSummary, tmp_path: Path) -> None:
        """The file sink creates parent directories."""
        path = tmp_path / "reports" / "summary.json"

        JsonFileSink(path).emit(summary)

        assert orjson.loads(path.read_bytes())["all_passed"] is False
