"""Main Typer application — imports and registers all CLI commands.

Entry point: ``ferrocache`` (configured via pyproject.toml console_scripts).

Commands: restore (main phase), save (post phase), run (dispatch on the
configured phase), keys.
"""

from __future__ import annotations

import typer

from ferrocache.cli.commands._shared import console, settings_or_exit
from ferrocache.cli.commands.keys import keys_cmd
from ferrocache.cli.commands.restore import restore_cmd, run_restore
from ferrocache.cli.commands.save import run_save, save_cmd

app = typer.Typer(
    name="ferrocache",
    help="ferrocache: dependency and build-artifact caching for CI jobs.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="restore", help="Restore cache groups (main phase).")(restore_cmd)
app.command(name="save", help="Save changed or stale cache groups (post phase).")(save_cmd)
app.command(name="keys", help="Show cache groups and their keys.")(keys_cmd)


@app.command(name="run", help="Run the phase named by FERROCACHE_PHASE.")
def run_cmd() -> None:
    """Dispatch to ``restore`` or ``save`` based on the configured phase."""
    settings = settings_or_exit()
    phase = settings.phase.strip().lower()
    if phase == "main":
        run_restore(settings)
    elif phase == "post":
        run_save(settings)
    elif not phase:
        console.print("[bold red]No phase configured.[/bold red] Set FERROCACHE_PHASE "
                      "to 'main' or 'post'.")
        raise typer.Exit(code=1)
    else:
        console.print(f"[yellow]Unexpectedly invoked with phase {phase!r}; doing nothing.[/yellow]")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
