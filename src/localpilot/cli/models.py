"""localpilot models / use / delete-model commands."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.table import Table

from localpilot.catalog import CHAT_MODELS
from localpilot.cli.common import build_service, console, load_settings
from localpilot.cli.errors import err_unknown_model
from localpilot.config import save_active_model


def models_cmd() -> None:
    """List catalog models and whether they are downloaded."""
    cfg = load_settings()
    service = build_service(cfg)

    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("", width=1)
    table.add_column("Id", style="bold")
    table.add_column("Name")
    table.add_column("Kind", style="dim")
    table.add_column("Status")
    for info in service.list_models():
        status = "[green]✓ downloaded[/]" if info.downloaded else "[dim]not downloaded[/]"
        table.add_row("*" if info.active else "", info.spec.id, info.spec.name, info.spec.kind, status)
    console.print(table)


def use_cmd(
    model_id: Annotated[str, typer.Argument(help="Catalog id of the chat model.")],
) -> None:
    """Select the active chat model (saved in ~/.localpilot/config.yaml)."""
    if model_id not in CHAT_MODELS:
        console.print(err_unknown_model(model_id, sorted(CHAT_MODELS)))
        raise typer.Exit(1)
    path = save_active_model(model_id)
    console.print(f"  [green]✓[/] Active model: {CHAT_MODELS[model_id].name} ({path})")


def delete_model_cmd(
    model_id: Annotated[
        str | None,
        typer.Argument(help="Model id to delete. Omit to delete every model file."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Delete downloaded model files."""
    cfg = load_settings()
    service = build_service(cfg)
    known = {info.spec.id for info in service.list_models()}
    if model_id is not None and model_id not in known:
        console.print(err_unknown_model(model_id, sorted(known)))
        raise typer.Exit(1)

    what = f"model '{model_id}'" if model_id else "ALL downloaded models"
    if not yes and not typer.confirm(f"Delete {what}?", default=False):
        console.print("[dim]Cancelled.[/]")
        raise typer.Exit(0)

    if not service.delete_model(model_id):
        console.print(f"[red]Error:[/] Could not delete {what}. See the log for details.")
        raise typer.Exit(1)
    console.print(f"  [green]✓[/] Deleted {what}")
