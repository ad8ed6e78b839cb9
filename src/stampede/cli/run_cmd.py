"""CLI command for executing a load test.

Usage:
    stampede run scenario.json
    stampede run --preset baseline --base-url http://staging:8080
    stampede run scenario.json --summary-out out/summary.json --prometheus-out out/run.prom

Exit codes:
    0: every threshold passed
    1: at least one threshold failed or was indeterminate
    2: the scenario or settings are invalid
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

import typer

from stampede.errors import ConfigurationError

if TYPE_CHECKING:
    from rich.console import Console

    from stampede.core.definition import ScenarioDefinition
    from stampede.engine.orchestrator import LoadTestRun
    from stampede.summary import RunSummary

EXIT_CONFIG_ERROR = 2


def run(
    scenario_file: Path | None = typer.Argument(
        None,
        help="Path to a scenario JSON file",
        dir_okay=False,
    ),
    preset: str | None = typer.Option(
        None,
        "--preset",
        "-p",
        help="Run a built-in scenario instead of a file",
    ),
    base_url: str | None = typer.Option(
        None,
        "--base-url",
        "-u",
        help="Target service root (overrides BASE_URL and the scenario)",
    ),
    seed: int | None = typer.Option(
        None,
        "--seed",
        help="Seed for random endpoint selection",
    ),
    summary_out: Path | None = typer.Option(
        None,
        "--summary-out",
        "-o",
        help="Write the JSON summary to this file instead of stdout",
    ),
    prometheus_out: Path | None = typer.Option(
        None,
        "--prometheus-out",
        help="Also write final aggregates as a Prometheus textfile",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level: debug, info, warning, error",
    ),
    log_json: bool | None = typer.Option(
        None,
        "--log-json/--no-log-json",
        help="Emit structured JSON logs",
    ),
) -> None:
    """Run a scenario and exit with its verdict.

    Logs and the verdict table go to stderr; stdout carries only the JSON
    summary so it can be piped into other tools.
    """
    from pydantic import ValidationError
    from rich.console import Console

    from stampede.config import Settings
    from stampede.engine.orchestrator import LoadTestRun, RunOptions
    from stampede.observability.logging import configure_logging
    from stampede.summary import JsonFileSink, JsonStdoutSink, ReportSink

    console = Console(stderr=True)

    try:
        settings = Settings()
        configure_logging(
            json_format=settings.log_json if log_json is None else log_json,
            level=log_level or settings.log_level,
        )
        scenario = _resolve_scenario(scenario_file, preset)
        options = RunOptions.from_settings(settings, scenario, base_url=base_url, seed=seed)
        load_test = LoadTestRun(scenario, options)
    except (ConfigurationError, ValidationError) as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from e

    console.print(
        f"[blue]Running[/blue] [bold]{scenario.name}[/bold] against {options.base_url} "
        f"({load_test.scheduler.total_duration:.0f}s, "
        f"peak {load_test.scheduler.peak_target} users)"
    )

    summary = asyncio.run(_execute(load_test))

    sink: ReportSink = JsonFileSink(summary_out) if summary_out else JsonStdoutSink()
    sink.emit(summary)

    if prometheus_out is not None and load_test.snapshot is not None:
        from stampede.metrics.exporter import write_textfile

        write_textfile(prometheus_out, load_test.snapshot, load_test.verdict, scenario.name)

    _print_verdicts(summary, console)
    raise typer.Exit(code=summary.exit_code)


def _resolve_scenario(scenario_file: Path | None, preset: str | None) -> ScenarioDefinition:
    """Pick the scenario from exactly one of a file or a preset name."""
    from stampede.core.loader import load_scenario
    from stampede.presets import get_preset

    if scenario_file is not None and preset is not None:
        raise ConfigurationError("Pass either a scenario file or --preset, not both")
    if scenario_file is not None:
        return load_scenario(scenario_file)
    if preset is not None:
        return get_preset(preset)
    raise ConfigurationError("No scenario given: pass a scenario file or --preset")


async def _execute(load_test: LoadTestRun) -> RunSummary:
    load_test.install_signal_handlers()
    try:
        return await load_test.run()
    finally:
        load_test.remove_signal_handlers()


def _print_verdicts(summary: RunSummary, console: Console) -> None:
    """Print the threshold table and overall result."""
    from rich.table import Table

    from stampede.metrics.thresholds import ReasonCode

    table = Table(title=f"Thresholds: {summary.scenario}")
    table.add_column("Threshold")
    table.add_column("Observed", justify="right")
    table.add_column("Result")

    for verdict in summary.thresholds:
        observed = "-" if verdict.observed_value is None else f"{verdict.observed_value:.4g}"
        if verdict.passed:
            result = "[green]passed[/green]"
        elif verdict.reason_code is ReasonCode.INDETERMINATE:
            result = "[yellow]indeterminate[/yellow]"
        else:
            result = "[red]failed[/red]"
        table.add_row(verdict.threshold_name, observed, result)

    console.print(table)

    checks = summary.checks
    if checks:
        console.print("[bold]Checks:[/bold]")
        for name, tally in checks.items():
            total = tally.passes + tally.fails
            pct = 100.0 * tally.passes / total if total else 0.0
            mark = "[green]✓[/green]" if tally.fails == 0 else "[red]✗[/red]"
            console.print(f"  {mark} {name}: {tally.passes}/{total} ({pct:.1f}%)")

    if summary.aborted:
        console.print(f"[red]Aborted by threshold:[/red] {summary.abort_reason}")
    elif not summary.completed:
        console.print("[yellow]Run cancelled before all stages completed[/yellow]")

    if summary.all_passed:
        console.print("[green]All thresholds passed[/green]")
    else:
        console.print("[red]Thresholds failed[/red]")
