"""
refile CLI -- virtualize large files behind small pointer files.

This package organizes the CLI into modular command groups.
Each group lives in its own module; the main Click group is
defined here and every subcommand is registered via a
register function.

Entry point: refile.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="refile")
@click.option("--verbose", "-v", is_flag=True, help="Also log to the console.")
def main(verbose: bool):
    """refile -- push large files to storage, keep a pointer behind.

    Pointers pull back byte-for-byte, with permissions and timestamps.
    """


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .virt import register_virt_commands
from .config_cmd import register_config_commands
from .registry_cmd import register_registry_commands
from .watch_cmd import register_watch_commands

register_virt_commands(main)
register_config_commands(main)
register_registry_commands(main)
register_watch_commands(main)
