"""localpilot index / query / status commands."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from localpilot.cli.common import build_service, console, load_settings
from localpilot.cli.errors import (
    err_index_failed,
    err_index_unavailable,
    err_path_not_found,
    warn_model_missing,
)
from localpilot.errors import IndexNotReadyError

_SNIPPET_CHARS = 120


def index_cmd(
    paths: Annotated[
        list[Path] | None,
        typer.Argument(help="Files or one directory to index. Defaults to the current directory."),
    ] = None,
) -> None:
    """Add project files to the retrieval index (already indexed files are skipped)."""
    targets = paths or [Path(".")]
    for p in targets:
        if not p.exists():
            console.print(err_path_not_found(str(p)))
            raise typer.Exit(1)

    cfg = load_settings()
    service = build_service(cfg)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        transient=True,
        console=console,
    ) as prog:
        task = prog.add_task("Indexing…", total=None)

        def _on_progress(current: int, total: int, filename: str) -> None:
            prog.update(task, completed=current, total=total, description=f"Indexing {filename}")

        async def _run() -> bool:
            if not await service.init_rag():
                console.print(err_index_unavailable())
                raise typer.Exit(1)
            if len(targets) == 1 and targets[0].is_dir():
                return await service.index_directory(targets[0], _on_progress)
            return await service.index_project([str(p) for p in targets], _on_progress)

        try:
            ok = asyncio.run(_run())
        finally:
            service.shutdown()

    if not ok:
        console.print(err_index_failed())
        raise typer.Exit(1)
    console.print("  [green]✓[/] Indexing complete")


def query_cmd(
    text: Annotated[str, typer.Argument(help="Query text.")],
    k: Annotated[int, typer.Option("--top-k", "-k", help="Number of chunks to return.")] = 3,
) -> None:
    """Show the indexed chunks most similar to TEXT."""
    cfg = load_settings()
    service = build_service(cfg)
    try:
        chunks = asyncio.run(service.query(text, k))
    except IndexNotReadyError:
        console.print(err_index_unavailable())
        raise typer.Exit(1)
    finally:
        service.shutdown()

    if not chunks:
        console.print("[dim]No matching chunks.[/]")
        return

    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("Score", style="bold", justify="right")
    table.add_column("Source", style="cyan")
    table.add_column("Text")
    for chunk in chunks:
        snippet = " ".join(chunk.text.split())
        if len(snippet) > _SNIPPET_CHARS:
            snippet = snippet[: _SNIPPET_CHARS - 1] + "…"
        table.add_row(f"{chunk.score:.3f}", chunk.source, snippet)
    console.print(table)


def status_cmd() -> None:
    """Show the active model and retrieval index status."""
    cfg = load_settings()
    service = build_service(cfg)

    lines = [
        f"Active model:  [bold]{service.active_model.name}[/] ({service.active_model_id})",
        f"Embedding:     {cfg.embedding.model}",
        f"Data dir:      {service.data_dir}",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Model[/]", expand=False))
    if not service.check_model():
        console.print(warn_model_missing(service.active_model_id))

    async def _run():
        if not await service.init_rag():
            return None
        return await service.index_status()

    try:
        status = asyncio.run(_run())
    finally:
        service.shutdown()

    if status is None:
        console.print(
            Panel(
                "[yellow]Index unavailable.[/]\n  Run:  localpilot init",
                title="[bold]Retrieval Index[/]",
                expand=False,
            )
        )
        return
    console.print(
        Panel(
            f"State: [bold]{status.state.value}[/]  |  "
            f"Files: [bold]{status.indexed_files:,}[/]  |  "
            f"Chunks: [bold]{status.chunks:,}[/]",
            title="[bold]Retrieval Index[/]",
            expand=False,
        )
    )
