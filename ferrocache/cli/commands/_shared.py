"""Helpers shared by the CLI commands."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import typer
from rich.console import Console

from ferrocache.cli.log_setup import configure_logging
from ferrocache.config import CacheSettings, ConfigurationError, load_settings
from ferrocache.core.orchestrator import CacheOrchestrator

console = Console()


def settings_or_exit(
    *, dependency_list: str | None = None, backend_path: Path | None = None
) -> CacheSettings:
    """Load settings with CLI overrides; exit 1 on configuration errors."""
    overrides: dict[str, Any] = {}
    if dependency_list is not None:
        overrides["dependency_list"] = dependency_list
    if backend_path is not None:
        overrides["backend_path"] = backend_path
    try:
        settings = load_settings(**overrides)
    except ConfigurationError as exc:
        console.print(f"[bold red]Configuration error:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    configure_logging(settings.log_level)
    return settings


def build_orchestrator(settings: CacheSettings) -> CacheOrchestrator:
    return CacheOrchestrator(settings)
