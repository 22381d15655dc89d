"""``ferrocache save`` — post phase: save groups that changed or went stale."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from ferrocache.cli.commands._shared import build_orchestrator, console, settings_or_exit
from ferrocache.config import CacheSettings
from ferrocache.models.records import SaveAction, SaveOutcome

_ACTION_STYLE = {
    SaveAction.CREATED: "[green]created[/green]",
    SaveAction.EXISTS: "[green]exists[/green]",
    SaveAction.SKIPPED: "[dim]skipped[/dim]",
    SaveAction.FAILED: "[yellow]failed[/yellow]",
}


def _changes(outcome: SaveOutcome) -> str:
    parts = [
        f"+{outcome.added}" if outcome.added else "",
        f"-{outcome.removed}" if outcome.removed else "",
        f"~{outcome.changed}" if outcome.changed else "",
        f"pruned {outcome.pruned}" if outcome.pruned else "",
    ]
    return " ".join(p for p in parts if p) or "-"


def save_cmd(
    dependency_list: str = typer.Option(
        None,
        "--dependency-list",
        "-d",
        help="Label separating jobs that must not share cached artifacts.",
    ),
    backend_path: Path = typer.Option(
        None,
        "--backend",
        "-b",
        help="Path to the local cache store.",
    ),
) -> None:
    """Save cache groups whose content changed or whose entry is stale.

    Failures are reported but never change the exit status: caching is an
    optimization, not part of the build result.
    """
    run_save(settings_or_exit(dependency_list=dependency_list, backend_path=backend_path))


def run_save(settings: CacheSettings) -> None:
    """Run the post phase with already-loaded settings and print the result."""
    outcomes = build_orchestrator(settings).run_post()

    if not outcomes:
        console.print("[dim]No cache groups to save.[/dim]")
        return

    table = Table(title="Cache save")
    table.add_column("Group", style="cyan")
    table.add_column("Action", justify="center")
    table.add_column("Reason")
    table.add_column("Changes")
    table.add_column("Key", overflow="fold")
    for outcome in outcomes:
        table.add_row(
            outcome.group_id,
            _ACTION_STYLE[outcome.action],
            outcome.reason or "-",
            _changes(outcome),
            outcome.key or "-",
        )
    console.print(table)
