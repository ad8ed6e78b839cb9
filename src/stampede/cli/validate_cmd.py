"""CLI command for validating scenario JSON files.

Usage:
    stampede validate scenario.json
    stampede validate scenarios/ --recursive
    stampede validate *.json --format json
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, TypedDict

import typer

if TYPE_CHECKING:
    from rich.console import Console


class ValidationResult(TypedDict):
    file: str
    valid: bool
    scenario: str | None
    duration_seconds: float | None
    peak_users: int | None
    errors: list[str]


def validate(
    paths: list[Path] = typer.Argument(
        ...,
        help="Paths to scenario files or directories",
    ),
    recursive: bool = typer.Option(
        False,
        "--recursive",
        "-r",
        help="Recursively search directories for JSON files",
    ),
    output_format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Output format: text, json",
    ),
) -> None:
    """Validate scenario files without running them.

    Checks the schema, stage durations, step definitions and that every
    threshold names a known metric with a supported aggregation.
    """
    import orjson
    from rich.console import Console

    console = Console(stderr=output_format == "json")

    files_to_validate: list[Path] = []
    for path in paths:
        if path.is_file():
            files_to_validate.append(path)
        elif path.is_dir():
            pattern = "**/*.json" if recursive else "*.json"
            files_to_validate.extend(sorted(path.glob(pattern)))
        else:
            console.print(f"[red]Path not found:[/red] {path}")

    if not files_to_validate:
        console.print("[yellow]No scenario files found to validate[/yellow]")
        raise typer.Exit(code=2)

    results = [_validate_file(file_path, console) for file_path in files_to_validate]
    failed = sum(1 for result in results if not result["valid"])

    if output_format == "json":
        typer.echo(orjson.dumps(results, option=orjson.OPT_INDENT_2).decode())
    else:
        console.print()
        console.print("[bold]Summary:[/bold]")
        console.print(f"  [green]Valid:[/green]   {len(results) - failed}")
        console.print(f"  [red]Invalid:[/red] {failed}")

    if failed > 0:
        raise typer.Exit(code=2)


def _validate_file(file_path: Path, console: Console) -> ValidationResult:
    """Validate a single file the same way a run would before starting."""
    from stampede.core.loader import load_scenario
    from stampede.engine.orchestrator import build_scheduler, build_thresholds
    from stampede.errors import ConfigurationError
    from stampede.metrics.thresholds import ThresholdEvaluator

    result: ValidationResult = {
        "file": str(file_path),
        "valid": False,
        "scenario": None,
        "duration_seconds": None,
        "peak_users": None,
        "errors": [],
    }

    try:
        scenario = load_scenario(file_path)
        scheduler = build_scheduler(scenario)
        ThresholdEvaluator(build_thresholds(scenario)).validate()
    except ConfigurationError as e:
        result["errors"].append(str(e))
        console.print(f"[red]✗[/red] {file_path}")
        for line in str(e).splitlines():
            console.print(f"    [red]└[/red] {line}")
        return result

    result["valid"] = True
    result["scenario"] = scenario.name
    result["duration_seconds"] = scheduler.total_duration
    result["peak_users"] = scheduler.peak_target
    console.print(
        f"[green]✓[/green] {file_path}: '{scenario.name}' "
        f"({scheduler.total_duration:.0f}s, peak {scheduler.peak_target} users)"
    )
    return result
