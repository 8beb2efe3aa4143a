"""Configuration commands."""

from __future__ import annotations

from typing import Annotated

import typer

from ...config import StoreConfig
from ..output import console, print_error, print_success

app = typer.Typer(help="Manage backend configuration")

_SETTABLE = ("url", "api_key", "user_id", "timeout")


@app.command("show")
def show_config():
    """Show the effective configuration (file plus environment)."""
    config = StoreConfig.load()
    console.print("[bold]Backend:[/bold]")
    console.print(f"  url: {config.url}")
    console.print(f"  api_key: {'(set)' if config.api_key else '(not set)'}")
    console.print(f"  access_token: {'(set)' if config.access_token else '(not set)'}")
    console.print(f"  user_id: {config.user_id or '(not set)'}")
    console.print(f"  timeout: {config.timeout}s")


@app.command("set")
def set_config(
    key: Annotated[str, typer.Argument(help=f"One of: {', '.join(_SETTABLE)}")],
    value: Annotated[str, typer.Argument(help="New value")],
):
    """Save a setting to the config file."""
    if key not in _SETTABLE:
        print_error(f"Unknown setting {key!r}")
        raise typer.Exit(1)

    config = StoreConfig.load()
    if key == "timeout":
        try:
            config.timeout = float(value)
        except ValueError:
            print_error(f"timeout must be a number, got {value!r}")
            raise typer.Exit(1) from None
    else:
        setattr(config, key, value)
    config.save()
    print_success(f"Saved {key}")
