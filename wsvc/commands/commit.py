"""wsvc commit — snapshot the workspace into a new record.

Always records: an unchanged workspace produces a record with the same root
tree as its parent.  The author comes from ``--author``, then
``commit.author`` in config, then the OS user name.
"""
from __future__ import annotations

import logging
import pathlib
from typing import Optional

import typer

from wsvc.commands._common import author_for, cli_errors, require_workspace, resolve_repo
from wsvc.config import load_config
from wsvc.snapshot import commit as commit_workspace

logger = logging.getLogger(__name__)

app = typer.Typer()


@app.callback(invoke_without_command=True)
def commit(
    ctx: typer.Context,
    message: str = typer.Option(..., "-m", "--message", help="Commit message."),
    author: Optional[str] = typer.Option(None, "--author", help="Override the configured author."),
    root: Optional[pathlib.Path] = typer.Option(
        None, "--root", help="Repository directory (default: discover from the cwd)."
    ),
) -> None:
    """Record the current workspace."""
    with cli_errors("commit"):
        repo = resolve_repo(root)
        workspace = require_workspace(repo, "commit")
        config = load_config(repo.root)
        with repo.lock():
            record_id = commit_workspace(
                repo.store, workspace, author=author_for(config, author), message=message
            )
    typer.echo(f"✅ Recorded {record_id[:8]} {message}")
