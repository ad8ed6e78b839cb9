"""CLI command for the built-in scenarios.

Usage:
    stampede presets
    stampede presets --show spike
"""

from __future__ import annotations

import typer


def presets(
    show: str | None = typer.Option(
        None,
        "--show",
        "-s",
        help="Print the JSON definition of one preset",
    ),
) -> None:
    """List built-in scenarios, or print one as a scenario file."""
    import orjson
    from rich.console import Console
    from rich.table import Table

    from stampede.core.durations import format_duration
    from stampede.engine.orchestrator import build_scheduler
    from stampede.errors import ConfigurationError
    from stampede.presets import PRESETS, get_preset, preset_names

    console = Console()

    if show is not None:
        try:
            get_preset(show)
        except ConfigurationError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(code=2) from e
        typer.echo(orjson.dumps(PRESETS[show], option=orjson.OPT_INDENT_2).decode())
        return

    table = Table(title="Built-in scenarios")
    table.add_column("Name", style="bold")
    table.add_column("Duration", justify="right")
    table.add_column("Peak users", justify="right")
    table.add_column("Description")

    for name in preset_names():
        scenario = get_preset(name)
        scheduler = build_scheduler(scenario)
        table.add_row(
            name,
            format_duration(scheduler.total_duration),
            str(scheduler.peak_target),
            scenario.description or "",
        )

    console.print(table)
