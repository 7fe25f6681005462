"""Watch commands: add, list, remove, toggle, events, poll, run."""

from __future__ import annotations

import sys
from datetime import datetime, timezone

import click
from rich.markup import escape
from rich.table import Table

from ._common import REFILE_HOME, console, get_engine, human_size
from ..models import WatchEvent
from ..watch import DEFAULT_INTERVAL, WatchLoop


def _when(ms: int) -> str:
    if not ms:
        return "never"
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _print_event(event: WatchEvent) -> None:
    if event.action == "pushed":
        console.print(f"  [green]pushed[/] {escape(event.file_path)} [dim]({human_size(event.size)})[/]")
    else:
        console.print(f"  [red]failed[/] {escape(event.file_path)}: {escape(event.error or '')}")


def register_watch_commands(main: click.Group) -> None:
    """Register the watch command group."""

    @main.group()
    def watch():
        """Watched folders -- push large files automatically.

        Each poll lists every enabled folder (not recursively) and
        pushes files at or above the folder's threshold.
        """

    @watch.command("add")
    @click.argument("folder", type=click.Path(exists=True, file_okay=False))
    @click.option("--threshold", type=int, default=None,
                  help="Minimum size in bytes (never below 1 MiB).")
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    def watch_add(folder: str, threshold, home: str):
        """Start watching FOLDER."""
        loop = WatchLoop(get_engine(home))
        added = loop.add_folder(folder) if threshold is None else loop.add_folder(folder, threshold)
        console.print(
            f"\n  Watching [cyan]{escape(added.path)}[/] "
            f"[dim](id {added.id}, threshold {human_size(added.threshold_bytes)})[/]\n"
        )

    @watch.command("list")
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    def watch_list(home: str):
        """List watched folders."""
        loop = WatchLoop(get_engine(home))
        folders = loop.folders()
        if not folders:
            console.print("[dim]No watched folders.[/]")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Enabled")
        table.add_column("Threshold", justify="right")
        table.add_column("Last scan", style="dim")
        table.add_column("Path")
        for f in folders:
            table.add_row(
                f.id,
                "[green]yes[/]" if f.enabled else "[yellow]no[/]",
                human_size(f.threshold_bytes),
                _when(f.last_scan_at),
                escape(f.path),
            )
        console.print()
        console.print(table)
        console.print()

    @watch.command("remove")
    @click.argument("folder_id")
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    def watch_remove(folder_id: str, home: str):
        """Stop watching the folder with FOLDER_ID."""
        loop = WatchLoop(get_engine(home))
        if not loop.remove_folder(folder_id):
            console.print(f"[bold red]No watched folder with id {escape(folder_id)}[/]")
            sys.exit(1)
        console.print(f"\n  Removed watch [cyan]{escape(folder_id)}[/]\n")

    @watch.command("toggle")
    @click.argument("folder_id")
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    def watch_toggle(folder_id: str, home: str):
        """Enable or disable the folder with FOLDER_ID."""
        loop = WatchLoop(get_engine(home))
        folder = loop.toggle_folder(folder_id)
        if folder is None:
            console.print(f"[bold red]No watched folder with id {escape(folder_id)}[/]")
            sys.exit(1)
        state = "[green]enabled[/]" if folder.enabled else "[yellow]disabled[/]"
        console.print(f"\n  {escape(folder.path)} {state}\n")

    @watch.command("events")
    @click.option("--clear", is_flag=True, help="Empty the journal.")
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    def watch_events(clear: bool, home: str):
        """Show the auto-push journal."""
        loop = WatchLoop(get_engine(home))
        if clear:
            loop.clear_events()
            console.print("[dim]Watch journal cleared.[/]")
            return

        events = loop.events()
        if not events:
            console.print("[dim]No watch events.[/]")
            return
        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Time", style="dim", no_wrap=True)
        table.add_column("Action")
        table.add_column("Size", justify="right")
        table.add_column("File")
        for e in events:
            action = "[green]pushed[/]" if e.action == "pushed" else "[red]failed[/]"
            detail = escape(e.file_path)
            if e.error:
                detail += f" [red]{escape(e.error)}[/]"
            table.add_row(_when(e.timestamp), action, human_size(e.size), detail)
        console.print()
        console.print(table)
        console.print()

    @watch.command("poll")
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    def watch_poll(home: str):
        """Run one poll over every enabled folder now."""
        engine = get_engine(home)
        if engine.load_config() is None:
            console.print("[bold red]No backend configured.[/]")
            sys.exit(1)
        failures = []

        def on_event(event: WatchEvent) -> None:
            _print_event(event)
            if event.action == "failed":
                failures.append(event)

        loop = WatchLoop(engine, on_event=on_event)
        pushed = loop.poll()
        console.print(f"\n  Poll pushed [green]{pushed}[/] file(s)\n")
        if failures:
            sys.exit(1)

    @watch.command("run")
    @click.option("--interval", default=DEFAULT_INTERVAL, help="Seconds between polls.")
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    def watch_run(interval: int, home: str):
        """Poll watched folders until interrupted (Ctrl+C)."""
        loop = WatchLoop(get_engine(home), interval=interval, on_event=_print_event)
        console.print(f"\n  [green]Watching[/] {len(loop.folders())} folder(s) every {interval}s")
        console.print("  [dim]Ctrl+C to stop[/]\n")
        loop.start()
        try:
            loop.run_forever()
        finally:
            loop.stop()
