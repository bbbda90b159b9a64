"""History commands: show, forget."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from tunesense.history import WorkloadHistory

console = Console()
error_console = Console(stderr=True)


def register(history_app: typer.Typer) -> None:
    """Register history commands on the given Typer sub-app."""

    @history_app.command("show")
    def history_show(
        history_file: Annotated[
            Path,
            typer.Option("--history", help="Path to workload history file"),
        ] = Path(".tunesense/history.json"),
    ) -> None:
        """
        List stored shape frequencies per table.

        Examples:

            $ tunesense history show --history .tunesense/history.json
        """
        if not history_file.exists():
            error_console.print(f"[yellow]No history at {history_file}[/yellow]")
            raise typer.Exit(code=0)

        history = WorkloadHistory(history_file)
        table = Table(title=f"Workload history ({history_file})")
        table.add_column("Table", style="cyan")
        table.add_column("Frequency", justify="right")
        table.add_column("Shape")

        for name in sorted(history.tables):
            entries = history.tables[name]
            for key in sorted(entries, key=lambda k: (-entries[k].get("frequency", 0.0), k)):
                entry = entries[key]
                table.add_row(name, f"{entry.get('frequency', 0.0):g}", entry.get("normalized_text", key))

        console.print(table)

    @history_app.command("forget")
    def history_forget(
        table_name: Annotated[str, typer.Argument(help="Table whose history to drop")],
        history_file: Annotated[
            Path,
            typer.Option("--history", help="Path to workload history file"),
        ] = Path(".tunesense/history.json"),
    ) -> None:
        """Drop the stored history of one table."""
        history = WorkloadHistory(history_file)
        if not history.forget(table_name):
            error_console.print(f"[yellow]No history for {table_name}[/yellow]")
            raise typer.Exit(code=1)
        history.save()
        console.print(f"[green]Forgot history for {table_name}[/green]")
