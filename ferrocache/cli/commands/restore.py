"""``ferrocache restore`` — main phase: restore cached groups.

Restores every enabled group that exists on disk and records what was
restored for the ``save`` step that runs after the build.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from ferrocache.cli.commands._shared import build_orchestrator, console, settings_or_exit
from ferrocache.config import CacheSettings
from ferrocache.models.records import HitKind

_HIT_STYLE = {
    HitKind.EXACT: "[green]exact[/green]",
    HitKind.FALLBACK: "[yellow]fallback[/yellow]",
    HitKind.MISS: "[red]miss[/red]",
}


def restore_cmd(
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
    """Restore cache groups and record provenance for the save step."""
    run_restore(settings_or_exit(dependency_list=dependency_list, backend_path=backend_path))


def run_restore(settings: CacheSettings) -> None:
    """Run the main phase with already-loaded settings and print the result."""
    snapshot = build_orchestrator(settings).run_main()

    if not snapshot.records:
        console.print("[dim]No cache groups to restore.[/dim]")
        return

    table = Table(title="Cache restore")
    table.add_column("Group", style="cyan")
    table.add_column("Result", justify="center")
    table.add_column("Digest")
    table.add_column("Restored from", overflow="fold")
    for record in snapshot.records.values():
        table.add_row(
            record.group_id,
            _HIT_STYLE[record.hit],
            record.digest or "-",
            record.matched_key or "-",
        )
    console.print(table)
