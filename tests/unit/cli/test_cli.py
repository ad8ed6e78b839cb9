"""Tests for the command-line interface."""

import logging
from pathlib import Path

import orjson
import pytest
from typer.testing import CliRunner

from stampede.cli import app
from stampede.transport.http import Response

runner = CliRunner()


class StubHttpTransport:
    """Stands in for HttpTransport so runs never touch the network."""

    status = 200

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs

    async def issue_request(self, method, url, timeout, headers=None, body=None) -> Response:
        return Response(self.status, 2.0, b'{"status": "healthy"}')

    async def aclose(self) -> None:
        pass


def write_scenario(path: Path, **overrides) -> Path:
    data = {
        "name": "cli",
        "stages": [{"duration": 0.2, "target": 1}, {"duration": 0.1, "target": 0}],
        "steps": [
            {"type": "request", "path": "/health", "checks": [{"kind": "status", "status": 200}]},
            {"type": "sleep", "duration": "20ms"},
        ],
        "thresholds": {"http_req_failed": ["rate<0.05"]},
    }
    data.update(overrides)
    path.write_bytes(orjson.dumps(data))
    return path


@pytest.fixture(autouse=True)
def restore_logging():
    """The run command reconfigures the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def stub_transport(monkeypatch: pytest.MonkeyPatch) -> type[StubHttpTransport]:
    monkeypatch.setattr("stampede.engine.orchestrator.HttpTransport", StubHttpTransport)
    monkeypatch.setenv("STAMPEDE_RECONCILE_INTERVAL", "0.02")
    monkeypatch.setenv("STAMPEDE_GRACEFUL_STOP", "1")
    return StubHttpTransport


class TestRunCommand:
    """Tests for `stampede run`."""

    def test_passing_run(self, stub_transport, tmp_path: Path) -> None:
        """A passing run exits 0 and writes the summary."""
        scenario = write_scenario(tmp_path / "scenario.json")
        summary_path = tmp_path / "out" / "summary.json"

        result = runner.invoke(
            app,
            ["run", str(scenario), "--base-url", "http://svc", "--summary-out", str(summary_path)],
        )

        assert result.exit_code == 0, result.output
        summary = orjson.loads(summary_path.read_bytes())
        assert summary["scenario"] == "cli"
        assert summary["base_url"] == "http://svc"
        assert summary["all_passed"] is True

    def test_failing_run(self, stub_transport, tmp_path: Path, monkeypatch) -> None:
        """Failed thresholds exit 1."""
        monkeypatch.setattr(StubHttpTransport, "status", 500)
        scenario = write_scenario(tmp_path / "scenario.json")

        result = runner.invoke(
            app, ["run", str(scenario), "--summary-out", str(tmp_path / "summary.json")]
        )

        assert result.exit_code == 1

    def test_prometheus_output(self, stub_transport, tmp_path: Path) -> None:
        """--prometheus-out writes a textfile alongside the summary."""
        scenario = write_scenario(tmp_path / "scenario.json")
        prom = tmp_path / "run.prom"

        result = runner.invoke(
            app,
            [
                "run",
                str(scenario),
                "--summary-out",
                str(tmp_path / "summary.json"),
                "--prometheus-out",
                str(prom),
            ],
        )

        assert result.exit_code == 0, result.output
        assert "stampede_run_passed" in prom.read_text()

    def test_options_after_file(self, stub_transport, tmp_path: Path) -> None:
        """Options are accepted after the scenario file."""
        scenario = write_scenario(tmp_path / "scenario.json")
        summary_path = tmp_path / "summary.json"

        result = runner.invoke(
            app,
            [
                "run",
                str(scenario),
                "--base-url",
                "http://after",
                "--seed",
                "7",
                "-o",
                str(summary_path),
            ],
        )

        assert result.exit_code == 0, result.output
        assert orjson.loads(summary_path.read_bytes())["base_url"] == "http://after"

    def test_options_before_file(self, stub_transport, tmp_path: Path) -> None:
        """Options are also accepted before the scenario file."""
        scenario = write_scenario(tmp_path / "scenario.json")
        summary_path = tmp_path / "summary.json"

        result = runner.invoke(app, ["run", "--summary-out", str(summary_path), str(scenario)])

        assert result.exit_code == 0, result.output
        assert summary_path.exists()

    def test_prometheus_output_in_new_directory(self, stub_transport, tmp_path: Path) -> None:
        """A passing run exits 0 even when the textfile directory does not exist yet."""
        scenario = write_scenario(tmp_path / "scenario.json")
        prom = tmp_path / "no" / "dir" / "run.prom"

        result = runner.invoke(
            app,
            [
                "run",
                str(scenario),
                "--prometheus-out",
                str(prom),
                "-o",
                str(tmp_path / "out" / "summary.json"),
            ],
        )

        assert result.exit_code == 0, result.output
        assert "stampede_run_passed" in prom.read_text()

    def test_invalid_scenario_exits_2(self, tmp_path: Path) -> None:
        """Configuration errors exit 2 before anything runs."""
        scenario = write_scenario(tmp_path / "bad.json", thresholds={"latency": ["p(95)<1"]})

        result = runner.invoke(app, ["run", str(scenario)])

        assert result.exit_code == 2
        assert "unknown metric" in result.output

    def test_missing_file_exits_2(self, tmp_path: Path) -> None:
        """A missing scenario file is a configuration error."""
        result = runner.invoke(app, ["run", str(tmp_path / "missing.json")])

        assert result.exit_code == 2

    def test_needs_a_scenario(self) -> None:
        """Running with neither a file nor a preset exits 2."""
        result = runner.invoke(app, ["run"])

        assert result.exit_code == 2
        assert "No scenario given" in result.output

    def test_file_and_preset_conflict(self, tmp_path: Path) -> None:
        """A file and a preset together are rejected."""
        scenario = write_scenario(tmp_path / "scenario.json")

        result = runner.invoke(app, ["run", str(scenario), "--preset", "baseline"])

        assert result.exit_code == 2

    def test_unknown_preset(self) -> None:
        """An unknown preset exits 2."""
        result = runner.invoke(app, ["run", "--preset", "tsunami"])

        assert result.exit_code == 2


class TestValidateCommand:
    """Tests for `stampede validate`."""

    def test_valid_file(self, tmp_path: Path) -> None:
        """A valid scenario exits 0."""
        scenario = write_scenario(tmp_path / "scenario.json")

        result = runner.invoke(app, ["validate", str(scenario)])

        assert result.exit_code == 0, result.output
        assert "cli" in result.output

    def test_directory_with_invalid_file(self, tmp_path: Path) -> None:
        """Any invalid file in a directory fails validation."""
        write_scenario(tmp_path / "good.json")
        write_scenario(tmp_path / "bad.json", stages=[{"duration": "5x", "target": 1}])

        result = runner.invoke(app, ["validate", str(tmp_path)])

        assert result.exit_code == 2

    def test_json_format(self, tmp_path: Path) -> None:
        """--format json reports per-file results."""
        scenario = write_scenario(tmp_path / "scenario.json")

        result = runner.invoke(app, ["validate", str(scenario), "--format", "json"])

        assert result.exit_code == 0
        assert '"peak_users": 1' in result.output
        assert "Path not found" not in result.output

    def test_json_format_reports_invalid_file(self, tmp_path: Path) -> None:
        """An invalid file exits 2 and is reported in the JSON output."""
        scenario = write_scenario(tmp_path / "bad.json", stages=[{"duration": "5x", "target": 1}])

        result = runner.invoke(app, ["validate", str(scenario), "--format", "json"])

        assert result.exit_code == 2
        assert '"valid": false' in result.output

    def test_nothing_to_validate(self, tmp_path: Path) -> None:
        """An empty directory is an error."""
        result = runner.invoke(app, ["validate", str(tmp_path)])

        assert result.exit_code == 2


class TestPresetsCommand:
    """Tests for `stampede presets`."""

    def test_list(self) -> None:
        """All presets are listed."""
        result = runner.invoke(app, ["presets"])

        assert result.exit_code == 0
        for name in ("baseline", "stress", "spike", "soak"):
            assert name in result.output

    def test_show(self) -> None:
        """--show prints a loadable scenario definition."""
        result = runner.invoke(app, ["presets", "--show", "spike"])

        assert result.exit_code == 0
        assert orjson.loads(result.stdout)["name"] == "spike"

    def test_show_unknown(self) -> None:
        """Unknown presets exit 2."""
        result = runner.invoke(app, ["presets", "--show", "tsunami"])

        assert result.exit_code == 2
