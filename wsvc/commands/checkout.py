"""wsvc checkout — restore a record into the workspace.

``REF`` is ``latest`` (the default, meaning HEAD) or a hex prefix of a
record id.  An ambiguous prefix lists every matching id so the user can
pick one.

Default mode overwrites and adds files but never deletes; ``--clean`` also
removes workspace entries that are not part of the record.  When
``commit.auto_record`` is enabled a dirty workspace is recorded first.
HEAD does not move.
"""
from __future__ import annotations

import logging
import pathlib
from typing import Optional

import typer

from wsvc.commands._common import author_for, cli_errors, require_workspace, resolve_repo
from wsvc.config import load_config
from wsvc.history import LATEST
from wsvc.restore import checkout

logger = logging.getLogger(__name__)


def run_checkout(ref: str, clean: bool, root: Optional[pathlib.Path]) -> None:
    with cli_errors("checkout"):
        repo = resolve_repo(root)
        workspace = require_workspace(repo, "checkout")
        config = load_config(repo.root)
        with repo.lock():
            result = checkout(
                repo.store,
                workspace,
                ref,
                clean=clean,
                auto_record=config.auto_record,
                author=author_for(config),
            )
    if result.auto_record_id:
        typer.echo(f"⚠️ Workspace had unrecorded changes — saved as {result.auto_record_id[:8]}")
    typer.echo(
        f"✅ Checked out {result.record_id[:8]} "
        f"({result.files_written} written, {result.entries_removed} removed)"
    )


def checkout_cmd(
    ref: str = typer.Argument(LATEST, help="'latest' or a record id prefix."),
    clean: bool = typer.Option(False, "--clean", help="Remove workspace entries not in the record."),
    root: Optional[pathlib.Path] = typer.Option(
        None, "--root", help="Repository directory (default: discover from the cwd)."
    ),
) -> None:
    """Restore a record into the workspace."""
    run_checkout(ref, clean, root)
