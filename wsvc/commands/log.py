"""wsvc log — history display, newest first.

Walks the parent chain from HEAD::

    record a1b2c3d4e5f6...
    Parent: f9e8d7c6
    Author: ada
    Date:   2026-02-27 17:30:00+00:00

        initial import

``--skip`` and ``--limit`` page through long histories.
"""
from __future__ import annotations

import logging
import pathlib
from typing import Optional

import typer

from wsvc.commands._common import cli_errors, resolve_repo
from wsvc.history import logs
from wsvc.objects import Record

logger = logging.getLogger(__name__)

app = typer.Typer()


def _render(record_id: str, record: Record, head: str | None) -> str:
    marker = "  (HEAD)" if record_id == head else ""
    lines = [f"record {record_id}{marker}"]
    if record.parent:
        lines.append(f"Parent: {record.parent[:8]}")
    lines.append(f"Author: {record.author}")
    lines.append(f"Date:   {record.timestamp.isoformat(sep=' ', timespec='seconds')}")
    lines.append("")
    lines.extend(f"    {line}" for line in (record.message.splitlines() or [""]))
    lines.append("")
    return "\n".join(lines)


@app.callback(invoke_without_command=True)
def log(
    ctx: typer.Context,
    skip: int = typer.Option(0, "--skip", min=0, help="Number of newest records to skip."),
    limit: int = typer.Option(10, "--limit", "-n", min=0, help="Maximum number of records to show."),
    root: Optional[pathlib.Path] = typer.Option(
        None, "--root", help="Repository directory (default: discover from the cwd)."
    ),
) -> None:
    """Show record history from HEAD."""
    with cli_errors("log"):
        repo = resolve_repo(root)
        head = repo.store.read_head()
        entries = logs(repo.store, skip=skip, limit=limit)
    if not entries:
        typer.echo("No records yet." if head is None else "No records in range.")
        return
    for record_id, record in entries:
        typer.echo(_render(record_id, record, head))
