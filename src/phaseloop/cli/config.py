"""
CLI: ``phaseloop config`` (settings inspection).
"""

from __future__ import annotations

import typer

from phaseloop.cli.utils import console

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, env"),
) -> None:
    """Show the effective loop settings."""
    from phaseloop.core.settings import get_settings

    settings = get_settings()

    if format == "json":
        console.print_json(settings.model_dump_json())
        return

    if format == "env":
        for key, value in sorted(settings.model_dump(mode="json").items()):
            console.print(f"PHASELOOP_{key.upper()}={'' if value is None else value}")
        return

    if format != "table":
        console.print(f"[red]Unknown format:[/red] {format}")
        raise typer.Exit(code=2)

    from rich.table import Table

    table = Table(title="Loop settings")
    table.add_column("Setting")
    table.add_column("Value")
    for key, value in settings.model_dump(mode="json").items():
        table.add_row(key, str(value))
    console.print(table)
