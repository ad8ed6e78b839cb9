"""CLI commands for Stampede.

Provides command-line interface using Typer:
- stampede run: Execute a scenario file or built-in preset
- stampede validate: Validate scenario JSON files
- stampede presets: List or show built-in scenarios

Usage:
    stampede --help
    stampede run scenario.json --base-url http://localhost:8080
    stampede run --preset spike --summary-out summary.json
    stampede validate scenarios/
    stampede presets --show baseline
"""

import typer

from stampede.cli.presets_cmd import presets
from stampede.cli.run_cmd import run
from stampede.cli.validate_cmd import validate

# Main CLI application
app = typer.Typer(
    name="stampede",
    help="Stampede: staged virtual-user HTTP load generator",
    no_args_is_help=True,
)

# Plain commands so options may follow the positional arguments
app.command("run", help="Run a load test scenario")(run)
app.command("validate", help="Validate scenario JSON files")(validate)
app.command("presets", help="List or show built-in scenarios")(presets)


@app.callback()
def callback() -> None:
    """Stampede: staged virtual-user HTTP load generator."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
