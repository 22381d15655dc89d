"""Logging setup for the CLI.

Console output goes through Rich. Under GitHub Actions, warnings and
errors are also written as workflow commands so they surface as
annotations on the run summary.
"""

from __future__ import annotations

import logging
import os
import sys

from rich.console import Console
from rich.logging import RichHandler


def _escape_data(message: str) -> str:
    return message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


class WorkflowCommandHandler(logging.Handler):
    """Emit ``::warning::`` / ``::error::`` workflow commands."""

    def __init__(self, stream=None) -> None:
        super().__init__(level=logging.WARNING)
        self._stream = stream or sys.stdout

    def emit(self, record: logging.LogRecord) -> None:
        command = "error" if record.levelno >= logging.ERROR else "warning"
        try:
            message = _escape_data(self.format(record))
            self._stream.write(f"::{command}::{message}\n")
            self._stream.flush()
        except Exception:
            self.handleError(record)


def running_in_github_actions() -> bool:
    return os.environ.get("GITHUB_ACTIONS") == "true"


def configure_logging(level: str = "INFO", *, console: Console | None = None) -> None:
    """Configure the ``ferrocache`` logger tree. Safe to call repeatedly."""
    logger = logging.getLogger("ferrocache")
    logger.setLevel(level.upper())
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    logger.addHandler(
        RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
    )
    if running_in_github_actions():
        annotations = WorkflowCommandHandler()
        annotations.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(annotations)
