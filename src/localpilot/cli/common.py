"""Shared CLI plumbing: config loading and service construction."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn

from localpilot.cli.errors import err_config
from localpilot.config import LocalPilotConfig, load_config
from localpilot.errors import ConfigError
from localpilot.log import configure_logging
from localpilot.service import InferenceService

console = Console()


def load_settings(project_dir: Path | None = None) -> LocalPilotConfig:
    """Load config and configure logging; exit 1 with a fix hint on bad config."""
    try:
        cfg = load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    configure_logging(cfg.logging.level, cfg.logging.file)
    return cfg


def build_service(cfg: LocalPilotConfig) -> InferenceService:
    return InferenceService(cfg)


def download_progress() -> Progress:
    """Progress bar driven by ``(percent, message)`` download callbacks."""
    return Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        transient=True,
        console=console,
    )
