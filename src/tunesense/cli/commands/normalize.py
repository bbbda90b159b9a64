"""Normalize command: show the shape a query is recorded under."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from tunesense.exceptions import MalformedQueryError
from tunesense.workload.shape_parser import parse_select

console = Console()
error_console = Console(stderr=True)


def register(app: typer.Typer) -> None:
    """Register normalize command on the given Typer app."""

    @app.command()
    def normalize(
        sql: Annotated[str, typer.Argument(help="SELECT statement to normalize")],
        terms: Annotated[
            bool,
            typer.Option("--terms", help="Also list the extracted predicate terms"),
        ] = False,
    ) -> None:
        """
        Print the normalized text and shape key of a query.

        Examples:

            $ tunesense normalize "SELECT * FROM orders WHERE user_id = 42"
            $ tunesense normalize --terms "SELECT id FROM t WHERE a = 1 AND b > 2"
        """
        try:
            parsed = parse_select(sql)
        except MalformedQueryError as e:
            error_console.print(f"[red]Error:[/red] {e.message}")
            raise typer.Exit(code=1)

        typer.echo(parsed.normalized_text)
        typer.echo(f"key: {parsed.key}  table: {parsed.table}")

        if terms and parsed.terms:
            table = Table(title="Predicate terms")
            table.add_column("#", justify="right")
            table.add_column("Target")
            table.add_column("Class")
            table.add_column("Term")
            for term in parsed.terms:
                table.add_row(
                    str(term.position),
                    term.target,
                    term.operator.value,
                    term.render(),
                )
            console.print(table)
