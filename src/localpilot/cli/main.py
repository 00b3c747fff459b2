"""localpilot CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from localpilot.cli.chat import ask_cmd, complete_cmd, init_cmd, inline_cmd
from localpilot.cli.index import index_cmd, query_cmd, status_cmd
from localpilot.cli.models import delete_model_cmd, models_cmd, use_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("localpilot")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"localpilot {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="localpilot",
    help=(
        "localpilot — local code assistant.\n\n"
        "  localpilot ask     Chat with a local model, grounded in your indexed project.\n"
        "  localpilot index   Embed project files into the retrieval index."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """localpilot — local code assistant."""


app.command("init")(init_cmd)
app.command("ask")(ask_cmd)
app.command("complete")(complete_cmd)
app.command("inline")(inline_cmd)
app.command("index")(index_cmd)
app.command("query")(query_cmd)
app.command("status")(status_cmd)
app.command("models")(models_cmd)
app.command("use")(use_cmd)
app.command("delete-model")(delete_model_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed localpilot version."""
    typer.echo(f"localpilot {_installed_version()}")


if __name__ == "__main__":
    app()
