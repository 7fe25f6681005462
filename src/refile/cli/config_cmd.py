"""Config commands: show, set-self-hosted, set-http-upload, set-local, remove."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
import yaml
from pydantic import ValidationError
from rich.markup import escape

from ._common import REFILE_HOME, console, get_engine
from ..config import HttpUploadConfig, LocalConfig, SelfHostedConfig
from ..errors import RefileError


def _mask(secret: str) -> str:
    if len(secret) <= 4:
        return "****"
    return "****" + secret[-4:]


def register_config_commands(main: click.Group) -> None:
    """Register the config command group."""

    @main.group()
    def config():
        """Storage backends -- where pushed files go.

        The first backend added becomes the default; --default moves
        the default to the backend being set.
        """

    def _store(home: str, backend_id: str, backend, make_default: bool) -> None:
        engine = get_engine(home)
        try:
            saved = engine.config_store.set_backend(backend_id, backend, make_default=make_default)
        except RefileError as exc:
            console.print(f"[bold red]Config not saved:[/] {escape(str(exc))}")
            sys.exit(1)
        tag = " [green](default)[/]" if saved.default_backend == backend_id else ""
        console.print(f"\n  Backend [cyan]{escape(backend_id)}[/] saved{tag}\n")

    @config.command("show")
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def config_show(home: str, json_out: bool):
        """Print the backend config (API keys masked)."""
        engine = get_engine(home)
        current = engine.load_config()
        if current is None:
            console.print("[yellow]No backend configured.[/]")
            sys.exit(1)

        doc = current.to_document()
        for backend in doc["backends"].values():
            if "apiKey" in backend:
                backend["apiKey"] = _mask(backend["apiKey"])

        if json_out:
            click.echo(json.dumps(doc, indent=2))
            return
        console.print()
        console.print(escape(yaml.safe_dump(doc, default_flow_style=False, sort_keys=False)))

    @config.command("set-self-hosted")
    @click.argument("backend_id")
    @click.option("--endpoint", required=True, help="Base URL, e.g. https://nas.local:8443")
    @click.option("--api-key", required=True, help="Bearer token for the endpoint.")
    @click.option("--default", "make_default", is_flag=True, help="Make this the default backend.")
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    def config_set_self_hosted(backend_id: str, endpoint: str, api_key: str, make_default: bool, home: str):
        """Add or replace a self-hosted HTTP backend."""
        try:
            backend = SelfHostedConfig(endpoint=endpoint, api_key=api_key)
        except ValidationError as exc:
            console.print(f"[bold red]Invalid backend:[/] {escape(str(exc))}")
            sys.exit(1)
        _store(home, backend_id, backend, make_default)

    @config.command("set-http-upload")
    @click.argument("backend_id")
    @click.option("--endpoint", required=True, help="Multipart upload URL.")
    @click.option("--field-name", default="file", show_default=True, help="Multipart field name.")
    @click.option("--url-path", "response_url_path", default="url", show_default=True,
                  help="Dotted path of the file URL in the JSON response.")
    @click.option("--header", "headers", multiple=True, help="Extra header as NAME=VALUE. Repeatable.")
    @click.option("--default", "make_default", is_flag=True, help="Make this the default backend.")
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    def config_set_http_upload(
        backend_id: str,
        endpoint: str,
        field_name: str,
        response_url_path: str,
        headers: tuple,
        make_default: bool,
        home: str,
    ):
        """Add or replace a generic multipart-upload backend."""
        parsed = {}
        for item in headers:
            name, sep, value = item.partition("=")
            if not sep or not name:
                console.print(f"[bold red]Bad header:[/] {escape(item)} (expected NAME=VALUE)")
                sys.exit(1)
            parsed[name.strip()] = value.strip()
        try:
            backend = HttpUploadConfig(
                endpoint=endpoint,
                field_name=field_name,
                response_url_path=response_url_path,
                headers=parsed or None,
            )
        except ValidationError as exc:
            console.print(f"[bold red]Invalid backend:[/] {escape(str(exc))}")
            sys.exit(1)
        _store(home, backend_id, backend, make_default)

    @config.command("set-local")
    @click.argument("backend_id")
    @click.option("--path", "target", required=True, type=click.Path(file_okay=False),
                  help="Directory that receives pushed files.")
    @click.option("--default", "make_default", is_flag=True, help="Make this the default backend.")
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    def config_set_local(backend_id: str, target: str, make_default: bool, home: str):
        """Add or replace a local-directory backend."""
        backend = LocalConfig(path=str(Path(target).expanduser().resolve()))
        _store(home, backend_id, backend, make_default)

    @config.command("remove")
    @click.argument("backend_id")
    @click.option("--home", default=REFILE_HOME, type=click.Path())
    def config_remove(backend_id: str, home: str):
        """Remove a backend. Pointers that name it can no longer be pulled."""
        engine = get_engine(home)
        try:
            remaining = engine.config_store.remove_backend(backend_id)
        except RefileError as exc:
            console.print(f"[bold red]{escape(str(exc))}[/]")
            sys.exit(1)
        console.print(f"\n  Removed [cyan]{escape(backend_id)}[/]")
        if remaining is None:
            console.print("  [yellow]No backends left; config cleared.[/]")
        else:
            console.print(f"  Default backend: [cyan]{escape(remaining.default_backend)}[/]")
        console.print()
