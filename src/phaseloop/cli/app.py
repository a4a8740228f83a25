"""
Root Typer application for the phaseloop CLI.
"""

from __future__ import annotations

import sys

import typer
from typer import Typer

from phaseloop.cli.utils import output_rows

app = Typer(
    name="phaseloop",
    help="phaseloop: phase-ordered cooperative callback scheduler.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("phaseloop")
        except PackageNotFoundError:
            from phaseloop import __version__ as v
        typer.echo(f"phaseloop {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override PHASELOOP_LOG_LEVEL."),
) -> None:
    """Inspect loop phases, run the ordering demo and show settings."""
    from phaseloop.core.logging import configure_logging
    from phaseloop.core.settings import get_settings

    settings = get_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=settings.json_logs,
        stream=sys.stderr,
        cache_loggers=False,
    )


@app.command("phases")
def phases(json_out: bool = typer.Option(False, "--json")) -> None:
    """List the loop phases in cycle order."""
    from phaseloop.core.enums import Phase

    rows = [
        {"order": index, "phase": phase.value, "runs": phase.description}
        for index, phase in enumerate(Phase.ordered(), start=1)
    ]
    output_rows(rows, as_json=json_out, title="Loop phases")


# ── Sub-command registration ─────────────────────────────────────────────

from phaseloop.cli.config import app as config_app  # noqa: E402
from phaseloop.cli.demo import demo  # noqa: E402

app.command("demo")(demo)
app.add_typer(config_app, name="config", help="Configuration inspection.")
