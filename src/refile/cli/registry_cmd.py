"""Registry commands: list, stats, scan, rebuild."""

from __future__ import annotations

import json

import click
from rich.markup import escape
from rich.table import Table

from ._common import REFILE_HOME, console, get_engine, human_size


def register_registry_commands(main: click.Group) -> None:
    """Register the registry command group."""

    @main.group()
    def registry():
        """Local index of every known pointer file.

        The index is a cache; `rebuild` re-derives it from the
        pointer files on disk.
        """

    @registry.command("list")
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def registry_list(home: str, json_out: bool):
        """List indexed pointers."""
        engine = get_engine(home)
        entries = sorted(engine.registry.list(), key=lambda e: e.pointer_path)

        if json_out:
            click.echo(json.dumps([e.model_dump(by_alias=True) for e in entries], indent=2))
            return
        if not entries:
            console.print("[dim]Registry is empty.[/]")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Size", justify="right", no_wrap=True)
        table.add_column("Backend", style="cyan")
        table.add_column("Original")
        for entry in entries:
            table.add_row(human_size(entry.size), escape(entry.backend), escape(entry.original_path))
        console.print()
        console.print(table)
        console.print()

    @registry.command("stats")
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def registry_stats(home: str, json_out: bool):
        """Totals per category (video, image, audio, ...)."""
        engine = get_engine(home)
        stats = engine.registry.stats()

        if json_out:
            click.echo(stats.model_dump_json(indent=2))
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Category", style="bold")
        table.add_column("Files", justify="right")
        table.add_column("Size", justify="right")
        for cat in sorted(stats.by_type, key=lambda c: c.bytes, reverse=True):
            table.add_row(cat.category, str(cat.count), human_size(cat.bytes))
        console.print()
        console.print(table)
        console.print(
            f"\n  [bold]{stats.total_files}[/] file(s), "
            f"[bold green]{human_size(stats.total_saved_bytes)}[/] virtualized\n"
        )

    @registry.command("scan")
    @click.argument("folders", nargs=-1, required=True, type=click.Path(file_okay=False))
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    def registry_scan(folders: tuple, home: str):
        """Index pointer files found in FOLDERS (non-recursive)."""
        engine = get_engine(home)
        result = engine.registry.scan_folders(folders)
        console.print(
            f"\n  Indexed [green]{result.added}[/] pointer(s), "
            f"migrated [cyan]{result.migrated}[/]\n"
        )

    @registry.command("rebuild")
    @click.argument("folders", nargs=-1, required=True, type=click.Path(file_okay=False))
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    def registry_rebuild(folders: tuple, home: str):
        """Clear the index and rebuild it from FOLDERS."""
        engine = get_engine(home)
        result = engine.registry.rebuild(folders)
        console.print(
            f"\n  Rebuilt registry: [green]{result.added}[/] pointer(s), "
            f"migrated [cyan]{result.migrated}[/]\n"
        )
