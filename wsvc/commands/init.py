"""wsvc init / wsvc new — create a repository.

``wsvc init`` turns the current directory into a repository; ``wsvc new
NAME`` creates ``NAME/`` first.  With ``--bare`` the store layout is written
directly into the directory (no ``.wsvc/`` and no workspace), which is the
shape a sync server serves from.
"""
from __future__ import annotations

import logging
import pathlib

import typer

from wsvc.commands._common import cli_errors
from wsvc.repo import init_repository

logger = logging.getLogger(__name__)

app = typer.Typer()


def run_init(path: pathlib.Path, bare: bool) -> None:
    with cli_errors("init"):
        repo = init_repository(path, bare=bare)
    kind = "bare repository" if repo.bare else "repository"
    typer.echo(f"✅ Initialised empty wsvc {kind} in {repo.root}")


@app.callback(invoke_without_command=True)
def init(
    ctx: typer.Context,
    bare: bool = typer.Option(False, "--bare", help="Create a bare repository with no workspace."),
) -> None:
    """Initialise a wsvc repository in the current directory."""
    run_init(pathlib.Path.cwd(), bare)


def run_new(name: str, bare: bool) -> None:
    """Create directory *name* and initialise a repository inside it."""
    run_init(pathlib.Path.cwd() / name, bare)
