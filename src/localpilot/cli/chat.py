"""localpilot init / ask / complete / inline commands.

Each invocation is its own process: the command initializes the active
model (downloading it on first use), runs one request, then shuts down.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from localpilot.cli.common import build_service, console, download_progress, load_settings
from localpilot.cli.errors import err_init_failed, err_no_cursor, err_path_not_found
from localpilot.config import ensure_global_config
from localpilot.inference.inline import CURSOR_MARKER
from localpilot.service import InferenceService, InitResult

_DEFAULT_SESSION = "default"


def _initialize(service: InferenceService, session_id: str) -> InitResult:
    with download_progress() as prog:
        task = prog.add_task("Preparing model…", total=100)

        def _on_download(percent: float, message: str) -> None:
            prog.update(task, completed=percent, description=message)

        return asyncio.run(service.initialize(session_id, _on_download))


def init_cmd(
    session: Annotated[
        str,
        typer.Option("--session", "-s", help="Session id to open."),
    ] = _DEFAULT_SESSION,
) -> None:
    """Download (if needed) and load the active model and embedding model."""
    config_path = ensure_global_config()
    console.print(f"  [green]✓[/] Global config: {config_path}")

    cfg = load_settings()
    service = build_service(cfg)
    try:
        result = _initialize(service, session)
    finally:
        service.shutdown()

    if not result.ok:
        console.print(err_init_failed(result.error))
        raise typer.Exit(1)
    console.print(f"  [green]✓[/] Model ready: {service.active_model.name}")


def ask_cmd(
    prompt: Annotated[str, typer.Argument(help="Question or instruction for the model.")],
    session: Annotated[
        str,
        typer.Option("--session", "-s", help="Session id."),
    ] = _DEFAULT_SESSION,
) -> None:
    """Ask the local model, with retrieved project context when relevant."""
    cfg = load_settings()
    service = build_service(cfg)

    async def _run() -> str | None:
        result = await service.initialize(session)
        if not result.ok:
            console.print(err_init_failed(result.error))
            return None
        return await service.ask(session, prompt)

    try:
        reply = asyncio.run(_run())
    finally:
        service.shutdown()

    if reply is None:
        raise typer.Exit(1)
    console.print(reply, markup=False, highlight=False)


def complete_cmd(
    file: Annotated[
        Path,
        typer.Argument(help="File whose text contains a <CURSOR> marker."),
    ],
) -> None:
    """Print a fill-in-the-middle completion for the <CURSOR> position."""
    if not file.is_file():
        console.print(err_path_not_found(str(file)))
        raise typer.Exit(1)
    text = file.read_text(encoding="utf-8", errors="replace")
    if CURSOR_MARKER not in text:
        console.print(err_no_cursor(str(file)))
        raise typer.Exit(1)

    cfg = load_settings()
    service = build_service(cfg)

    async def _run() -> str | None:
        result = await service.initialize("system-autocomplete")
        if not result.ok:
            console.print(err_init_failed(result.error))
            raise typer.Exit(1)
        service.destroy_session("system-autocomplete")
        return await service.complete_inline(text)

    try:
        completion = asyncio.run(_run())
    finally:
        service.shutdown()

    if not completion:
        console.print("[dim]No completion.[/]")
        return
    console.print(completion, markup=False, highlight=False)


def inline_cmd(
    file: Annotated[Path, typer.Argument(help="Source file to generate code for.")],
    prompt: Annotated[str, typer.Argument(help="What the code should do.")],
    line: Annotated[
        int,
        typer.Option("--line", "-l", help="1-based line number the request refers to."),
    ] = 1,
) -> None:
    """Generate code for PROMPT in the context of FILE around --line."""
    if not file.is_file():
        console.print(err_path_not_found(str(file)))
        raise typer.Exit(1)
    code = file.read_text(encoding="utf-8", errors="replace")

    cfg = load_settings()
    service = build_service(cfg)
    try:
        output = asyncio.run(service.inline_prompt(code, prompt, line))
    finally:
        service.shutdown()

    console.print(output, markup=False, highlight=False)
    if output.startswith("// Error"):
        raise typer.Exit(1)
