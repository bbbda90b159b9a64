"""
TuneSense CLI - index and partition advisor.

Reads a statistics/policy/workload snapshot document and prints
recommendations. Never connects to a database and never executes DDL.

Usage:
    tunesense advise snapshot.yaml
    tunesense advise snapshot.yaml --table orders --json
    tunesense normalize "SELECT * FROM orders WHERE id = 42"
    tunesense --help
"""

from __future__ import annotations

from typing import Annotated, Optional

import typer
from rich.console import Console

from tunesense import __version__
from tunesense.cli.commands import advise as advise_commands
from tunesense.cli.commands import history as history_commands
from tunesense.cli.commands import normalize as normalize_commands

app = typer.Typer(
    name="tunesense",
    help="Index and partition advisor for PostgreSQL-style workloads",
    no_args_is_help=True,
)
history_app = typer.Typer(help="Inspect the stored workload history", no_args_is_help=True)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"TuneSense version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """TuneSense - index and partition advisor."""
    pass


advise_commands.register(app)
normalize_commands.register(app)
history_commands.register(history_app)
app.add_typer(history_app, name="history")


if __name__ == "__main__":
    app()
