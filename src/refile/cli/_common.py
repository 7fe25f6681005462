"""Shared utilities for all CLI command modules.

Provides the Rich console instance, logging setup, the engine factory,
and the small formatting helpers every command group uses.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import click
from rich.console import Console
from rich.markup import escape

from .. import REFILE_HOME
from ..engine import VirtualizationEngine

console = Console()
logger = logging.getLogger("refile.cli")

LOG_DIR = "logs"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

_handlers: list[logging.Handler] = []


def setup_logging(home_path: Path, verbose: bool = False) -> None:
    """Attach the file handler (and a console handler with --verbose).

    Handlers installed by an earlier call are replaced, not stacked.
    """
    root = logging.getLogger("refile")
    for handler in _handlers:
        root.removeHandler(handler)
        handler.close()
    _handlers.clear()

    log_dir = home_path / LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_dir / "refile.log", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    _handlers.append(file_handler)

    if verbose:
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        _handlers.append(stream)

    for handler in _handlers:
        root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)


def get_engine(home: str) -> VirtualizationEngine:
    """Build an engine for ``home`` with logging wired up."""
    home_path = Path(home).expanduser()
    ctx = click.get_current_context(silent=True)
    verbose = bool(ctx and ctx.find_root().params.get("verbose"))
    home_path.mkdir(parents=True, exist_ok=True)
    setup_logging(home_path, verbose)
    return VirtualizationEngine(home=home_path)


def human_size(n: float) -> str:
    """Format bytes as human-readable size."""
    for unit in ("B", "KB", "MB", "GB"):
        if n < 1024:
            return f"{n:.0f} {unit}" if unit == "B" else f"{n:.1f} {unit}"
        n /= 1024
    return f"{n:.1f} TB"


def print_errors(errors: Iterable[str]) -> None:
    for line in errors:
        console.print(f"    [red]x[/] {escape(line)}")
