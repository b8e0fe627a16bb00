"""wsvc config — read and write configuration values.

Subcommands::

    wsvc config get KEY [--global]
    wsvc config set KEY VALUE [--global]
    wsvc config unset KEY [--global]

Without ``--global`` the repository-local file is written, and ``get``
prints the effective value (local overrides global).  ``auth.password`` is
masked on output.
"""
from __future__ import annotations

import logging
import pathlib

import typer

from wsvc.commands._common import cli_errors
from wsvc.config import get_value, set_value, unset_value
from wsvc.errors import ExitCode
from wsvc.repo import find_repository

logger = logging.getLogger(__name__)

app = typer.Typer(no_args_is_help=True)

_GLOBAL_HELP = "Use the user-wide config file instead of the repository's."


def _store_root(global_: bool) -> pathlib.Path | None:
    if global_:
        return None
    repo = find_repository()
    return repo.root if repo is not None else None


@app.command("get")
def get(
    key: str = typer.Argument(..., help="Config key, e.g. commit.author."),
    global_: bool = typer.Option(False, "--global", help=_GLOBAL_HELP),
) -> None:
    """Print the value of KEY."""
    with cli_errors("config get"):
        value = get_value(key, _store_root(global_), global_=global_)
    if value is None:
        raise typer.Exit(code=ExitCode.USER_ERROR)
    if isinstance(value, bool):
        typer.echo("true" if value else "false")
    elif key == "auth.password":
        typer.echo("***")
    else:
        typer.echo(str(value))


@app.command("set")
def set_(
    key: str = typer.Argument(..., help="Config key, e.g. commit.author."),
    value: str = typer.Argument(..., help="New value."),
    global_: bool = typer.Option(False, "--global", help=_GLOBAL_HELP),
) -> None:
    """Set KEY to VALUE."""
    with cli_errors("config set"):
        path = set_value(key, value, _store_root(global_), global_=global_)
    typer.echo(f"✅ {key} updated in {path}")


@app.command("unset")
def unset(
    key: str = typer.Argument(..., help="Config key, e.g. commit.author."),
    global_: bool = typer.Option(False, "--global", help=_GLOBAL_HELP),
) -> None:
    """Remove KEY."""
    with cli_errors("config unset"):
        removed = unset_value(key, _store_root(global_), global_=global_)
    if not removed:
        typer.echo(f"⚠️ {key} was not set")
        raise typer.Exit(code=ExitCode.USER_ERROR)
    typer.echo(f"✅ {key} removed")
