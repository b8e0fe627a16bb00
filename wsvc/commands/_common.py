"""Helpers shared by the wsvc CLI commands."""
from __future__ import annotations

import contextlib
import getpass
import logging
import pathlib
from collections.abc import Iterator
from typing import Optional

import typer

from wsvc.config import WsvcConfig
from wsvc.errors import ExitCode, WsvcError
from wsvc.repo import Repository, open_repository, require_repository

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def cli_errors(command: str) -> Iterator[None]:
    """Translate wsvc errors into ``❌`` output and the matching exit code.

    Messages go to stdout so that ``typer.testing.CliRunner`` captures them
    in ``result.output``.
    """
    try:
        yield
    except typer.Exit:
        raise
    except WsvcError as exc:
        typer.echo(f"❌ {exc.message}")
        if exc.retryable:
            typer.echo("   (transient failure; re-running the command is safe)")
        raise typer.Exit(code=exc.exit_code) from exc
    except Exception as exc:
        typer.echo(f"❌ wsvc {command} failed: {exc}")
        logger.error("❌ wsvc %s error: %s", command, exc, exc_info=True)
        raise typer.Exit(code=ExitCode.INTERNAL_ERROR) from exc


def resolve_repo(root: Optional[pathlib.Path]) -> Repository:
    """Open the repository at *root*, or discover it from the cwd."""
    return open_repository(root) if root is not None else require_repository()


def require_workspace(repo: Repository, command: str) -> pathlib.Path:
    if repo.workspace is None:
        raise WsvcError(f"wsvc {command} needs a workspace; {repo.root} is a bare repository", ExitCode.USER_ERROR)
    return repo.workspace


def author_for(config: WsvcConfig, override: Optional[str] = None) -> str:
    """Pick the record author: explicit flag, then ``commit.author``, then the OS user."""
    if override:
        return override
    if config.author:
        return config.author
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"
