"""localpilot rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from localpilot.cli.errors import err_init_failed
    console.print(err_init_failed(result.error))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_config(message: str) -> str:
    """Config file is invalid or contains a forbidden key."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix localpilot.yaml or ~/.localpilot/config.yaml and retry."
    )


def err_init_failed(error: str | None) -> str:
    """Model download or load failed."""
    return (
        f"[red]Error:[/] AI initialization failed: {error or 'unknown error'}\n"
        "  Check your network connection and free disk space, then run:\n"
        "    localpilot init"
    )


def err_unknown_model(model_id: str, available: list[str]) -> str:
    """Model id is not in the catalog."""
    return (
        f"[red]Error:[/] Unknown model '{model_id}'.\n"
        f"  Available: {', '.join(available)}\n"
        "  Run:  localpilot models"
    )


def err_index_unavailable() -> str:
    """Embedding model missing, so the retrieval index cannot open."""
    return (
        "[red]Error:[/] Retrieval index is unavailable (embedding model not downloaded).\n"
        "  Run:  localpilot init"
    )


def err_index_failed() -> str:
    """Indexing batch was rejected or aborted."""
    return (
        "[red]Error:[/] Indexing did not complete.\n"
        "  Another indexing run may be active, or too many files failed in a row.\n"
        "  Re-run with LOCALPILOT_LOG_LEVEL=DEBUG for per-file errors; completed files are kept."
    )


def err_path_not_found(path: str) -> str:
    return (
        f"[red]Error:[/] Path not found: '{path}'\n"
        "  Check the path and retry."
    )


def err_no_cursor(path: str) -> str:
    """Completion input has no <CURSOR> marker."""
    return (
        f"[red]Error:[/] No <CURSOR> marker in '{path}'.\n"
        "  Insert <CURSOR> where the completion should go."
    )


def warn_model_missing(model_id: str) -> str:
    """Active model not downloaded yet."""
    return (
        f"[yellow]⚠[/] Model '{model_id}' is not downloaded yet.\n"
        "  Run:  localpilot init"
    )
