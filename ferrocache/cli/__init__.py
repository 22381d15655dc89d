"""ferrocache CLI — Typer-based command-line interface.

Provides the ``ferrocache`` command with subcommands for the restore
(main) and save (post) phases of a CI job, plus key inspection.

All output uses Rich for formatted terminal display.
"""
