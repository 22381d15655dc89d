"""``ferrocache keys`` — show groups, digests and keys without touching the backend."""

from __future__ import annotations

import typer
from rich.table import Table

from ferrocache.cli.commands._shared import console, settings_or_exit
from ferrocache.core.catalog import GroupCatalog
from ferrocache.core.durations import format_duration
from ferrocache.core.fingerprint import Fingerprinter
from ferrocache.core.key_builder import CacheKeyBuilder
from ferrocache.core.paths import PathRoots


def keys_cmd(
    dependency_list: str = typer.Option(
        None,
        "--dependency-list",
        "-d",
        help="Label separating jobs that must not share cached artifacts.",
    ),
) -> None:
    """List the cache groups present on this host and the keys they map to."""
    settings = settings_or_exit(dependency_list=dependency_list)
    roots = PathRoots.from_settings(settings)
    catalog = GroupCatalog.from_settings(settings, roots)
    fingerprinter = Fingerprinter(roots, settings.toolchain)
    key_builder = CacheKeyBuilder(cross_platform_sharing=settings.cross_platform_sharing)

    groups = catalog.groups()
    if not groups:
        console.print("[dim]No cache groups present on this host.[/dim]")
        return

    table = Table(title=f"Cache groups ({key_builder.platform_tag})")
    table.add_column("Group", style="cyan")
    table.add_column("Files", justify="right")
    table.add_column("Recache")
    table.add_column("Key", overflow="fold")
    for group in groups:
        fingerprint = fingerprinter.fingerprint(group)
        table.add_row(
            group.group_id,
            str(fingerprint.file_count),
            format_duration(group.recache.min_age),
            key_builder.build_key(group, fingerprint.digest).render(),
        )
    console.print(table)
