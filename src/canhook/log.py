"""Logging setup for command-line use."""

from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: int | str = logging.INFO, console: Optional[Console] = None) -> None:
    """Route canhook log records through a Rich handler.

    Library modules only create loggers; handlers are installed here, by the CLI.
    """
    handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    root = logging.getLogger("canhook")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False
