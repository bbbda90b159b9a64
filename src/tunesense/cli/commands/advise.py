"""Advise command: recommendations from a snapshot document."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from tunesense.config import AdvisorConfig, get_config, load_config_from_file
from tunesense.engine import AdvisoryService
from tunesense.exceptions import TuneSenseError
from tunesense.history import WorkloadHistory
from tunesense.output.renderers import (
    OutputFormat,
    render,
    render_batch_json,
)
from tunesense.providers import SnapshotCatalog

console = Console()
error_console = Console(stderr=True)


def _load_config(config_file: Path | None) -> AdvisorConfig:
    if config_file is None:
        return get_config()
    return load_config_from_file(config_file)


def register(app: typer.Typer) -> None:
    """Register advise command on the given Typer app."""

    @app.command()
    def advise(
        snapshot: Annotated[
            Path,
            typer.Argument(
                help="Snapshot document (JSON or YAML) with statistics, policies and workload",
                exists=True,
                readable=True,
                resolve_path=True,
            ),
        ],
        tables: Annotated[
            Optional[list[str]],
            typer.Option("--table", "-t", help="Table to advise (repeatable; default: all)"),
        ] = None,
        json_output: Annotated[
            bool,
            typer.Option("--json", "-j", help="Output results as JSON"),
        ] = False,
        markdown: Annotated[
            bool,
            typer.Option("--markdown", help="Output results as Markdown"),
        ] = False,
        timeout: Annotated[
            Optional[float],
            typer.Option("--timeout", help="Per-table deadline in seconds"),
        ] = None,
        history_file: Annotated[
            Optional[Path],
            typer.Option("--history", help="Workload history file to weight and update"),
        ] = None,
        config_file: Annotated[
            Optional[Path],
            typer.Option("--config", "-c", help="Advisor configuration file (JSON or YAML)"),
        ] = None,
    ) -> None:
        """
        Recommend indexes and partitioning for tables in a snapshot.

        Exit codes: 0 = success, 1 = a run failed or the input is invalid,
        2 = a recommendation is blocked by a policy conflict.

        Examples:

            $ tunesense advise snapshot.yaml
            $ tunesense advise snapshot.yaml -t orders --json
            $ tunesense advise snapshot.yaml --history .tunesense/history.json
        """
        try:
            config = _load_config(config_file)
            catalog = SnapshotCatalog.from_file(snapshot)
        except TuneSenseError as e:
            error_console.print(f"[red]Error:[/red] {e.message}")
            raise typer.Exit(code=1)

        selected = sorted(set(tables)) if tables else catalog.tables
        if not selected:
            error_console.print("[yellow]Snapshot contains no tables[/yellow]")
            raise typer.Exit(code=0)
        unknown = [t for t in selected if t not in catalog.tables]
        if unknown:
            error_console.print(f"[red]Error:[/red] unknown table(s): {', '.join(unknown)}")
            raise typer.Exit(code=1)

        history = None
        if history_file is not None:
            history = WorkloadHistory(
                history_file,
                weight=config.history_weight,
                decay=config.history_decay,
            )

        service = AdvisoryService(catalog, catalog, catalog, config=config, history=history)
        batch = service.run_many(selected, timeout=timeout)

        if history is not None and batch.reports:
            history.save()

        output_format = OutputFormat.TEXT
        if json_output:
            output_format = OutputFormat.JSON
        elif markdown:
            output_format = OutputFormat.MARKDOWN

        if output_format == OutputFormat.JSON and len(selected) > 1:
            typer.echo(render_batch_json(batch))
        else:
            for report in batch.reports:
                if output_format == OutputFormat.TEXT:
                    console.print(render(report, output_format), markup=False, highlight=False)
                else:
                    typer.echo(render(report, output_format))

        for table, error in batch.failures:
            error_console.print(f"[red]FAIL[/red] {table}: {error.message}")

        if batch.failures:
            raise typer.Exit(code=1)
        if any(report.has_errors for report in batch.reports):
            raise typer.Exit(code=2)
