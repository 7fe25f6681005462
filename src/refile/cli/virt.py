"""Virtualization commands: scan, push, pull, status."""

from __future__ import annotations

import json
import sys
from typing import Optional

import click
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ._common import REFILE_HOME, console, get_engine, human_size, print_errors
from ..engine import MIN_SIZE_BYTES
from ..models import ProgressPhase, VirtProgress


def _progress(progress: VirtProgress) -> None:
    if progress.phase in (ProgressPhase.HASHING, ProgressPhase.DOWNLOADING):
        console.print(
            f"  [dim]{progress.current}/{progress.total}[/] "
            f"{progress.phase.value} {escape(progress.current_file)}"
        )


def register_virt_commands(main: click.Group) -> None:
    """Register scan, push, pull and status."""

    @main.command("scan")
    @click.argument("folder", required=False, type=click.Path(file_okay=False))
    @click.option("--threshold", type=int, default=None,
                  help="Minimum size in bytes (volume scans never go below 1 MiB).")
    @click.option("--volume", "volumes", multiple=True, type=click.Path(file_okay=False),
                  help="Volume root to scan recursively. Repeatable.")
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    @click.option("--json-out", is_flag=True, help="Output as machine-readable JSON.")
    def scan(folder: Optional[str], threshold: Optional[int], volumes: tuple, home: str, json_out: bool):
        """List large files and pointers.

        With FOLDER, lists that one folder. Without it, walks every
        volume (or each --volume) recursively.
        """
        engine = get_engine(home)
        if folder:
            result = engine.scan_folder(folder, threshold_bytes=threshold or 0)
        else:
            result = engine.scan(
                volumes=list(volumes) or None,
                threshold_bytes=threshold if threshold is not None else MIN_SIZE_BYTES,
            )

        if json_out:
            click.echo(result.model_dump_json(indent=2))
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Size", justify="right", no_wrap=True)
        table.add_column("Type", style="dim")
        table.add_column("Path")
        for item in result.items:
            if item.is_directory:
                table.add_row("", "dir", f"[bold blue]{escape(item.path)}/[/]")
                continue
            marker = " [magenta](virtual)[/]" if item.is_virtualized else ""
            table.add_row(human_size(item.size), item.mime, escape(item.path) + marker)

        console.print()
        console.print(table)
        files = [i for i in result.items if not i.is_directory]
        console.print(
            f"\n  [bold]{len(files)}[/] file(s), {human_size(result.total_size)} "
            f"[dim]in {result.scan_duration_ms} ms[/]"
        )
        if result.cancelled:
            console.print("  [yellow]Scan cancelled.[/]")
        console.print()

    @main.command("push")
    @click.argument("paths", nargs=-1, required=True, type=click.Path())
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    def push(paths: tuple, home: str):
        """Upload files and replace each with a pointer."""
        engine = get_engine(home)
        result = engine.push(list(paths), on_progress=_progress)

        console.print(
            f"\n  Pushed [green]{result.pushed}[/], failed "
            f"[{'red' if result.failed else 'dim'}]{result.failed}[/], "
            f"freed [bold]{human_size(result.freed_bytes)}[/]"
        )
        if result.errors:
            print_errors(result.errors)
        console.print()
        if result.failed:
            sys.exit(1)

    @main.command("pull")
    @click.argument("pointers", nargs=-1, required=True, type=click.Path())
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    def pull(pointers: tuple, home: str):
        """Download files back from their pointers."""
        engine = get_engine(home)
        result = engine.pull(list(pointers), on_progress=_progress)

        console.print(
            f"\n  Pulled [green]{result.pulled}[/], failed "
            f"[{'red' if result.failed else 'dim'}]{result.failed}[/], "
            f"restored [bold]{human_size(result.restored_bytes)}[/]"
        )
        if result.errors:
            print_errors(result.errors)
        console.print()
        if result.failed:
            sys.exit(1)

    @main.command("status")
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    @click.option("--json-out", is_flag=True, help="Output as machine-readable JSON.")
    def status(home: str, json_out: bool):
        """Show virtualization counters and backend state."""
        engine = get_engine(home)
        st = engine.status()
        config = engine.load_config()

        if json_out:
            data = st.model_dump()
            data["default_backend"] = config.default_backend if config else None
            click.echo(json.dumps(data, indent=2))
            return

        backend = (
            f"[cyan]{escape(config.default_backend)}[/] "
            f"[dim]({len(config.backends)} configured)[/]"
            if config else "[yellow]none[/] [dim](run refile config set-local/set-self-hosted)[/]"
        )
        console.print()
        console.print(
            Panel(
                f"Virtualized files: [bold]{st.virtualized_files}[/]\n"
                f"Space saved: [bold green]{human_size(st.saved_bytes)}[/]\n"
                f"Default backend: {backend}",
                title="refile",
                border_style="cyan",
            )
        )
        console.print()
