"""wsvc sync / wsvc clone — exchange records with a sync server.

``wsvc sync [URL]`` reconciles the local store with the server at URL, or
with ``remote.origin`` when URL is omitted.  Credentials come from
``--account``/``--password`` or from ``auth.account``/``auth.password``.
If HEAD moved to a newer peer record and the repository has a workspace,
the new HEAD is checked out (auto-recording a dirty workspace first when
``commit.auto_record`` is enabled).

``wsvc clone URL [DIR]`` creates a repository, stores URL as
``remote.origin``, syncs and checks out HEAD.

An interrupted sync can simply be re-run: objects already received are
kept and are not transferred again.
"""
from __future__ import annotations

import asyncio
import logging
import pathlib
import urllib.parse
from typing import Optional

import typer

from wsvc.commands._common import author_for, cli_errors, resolve_repo
from wsvc.config import load_config, set_value
from wsvc.errors import ConfigError, ExitCode, WsvcError
from wsvc.repo import Repository, init_repository
from wsvc.restore import checkout
from wsvc.sync.client import sync_with_remote
from wsvc.sync.protocol import SyncReport

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async cores
# ---------------------------------------------------------------------------


async def _sync_async(
    repo: Repository,
    url: str,
    account: Optional[str] = None,
    password: Optional[str] = None,
) -> SyncReport:
    """Sync *repo* with *url* and refresh the workspace if HEAD moved."""
    config = load_config(repo.root)
    report = await sync_with_remote(
        repo.store,
        url,
        account=account or config.account,
        password=password or config.password,
    )
    if report.head_changed and report.head_after and repo.workspace is not None:
        checkout(
            repo.store,
            repo.workspace,
            report.head_after,
            auto_record=config.auto_record,
            author=author_for(config),
        )
    return report


def _derive_directory_name(url: str) -> str:
    """Derive a clone directory name from a sync URL.

    Uses the last path component unless it is the ``sync`` endpoint itself,
    then the host name, then ``wsvc-clone``.
    """
    parsed = urllib.parse.urlparse(url)
    last = parsed.path.rstrip("/").rsplit("/", 1)[-1]
    if last and last != "sync":
        return last
    return parsed.hostname or "wsvc-clone"


async def _clone_async(
    url: str,
    target: pathlib.Path,
    bare: bool = False,
    account: Optional[str] = None,
    password: Optional[str] = None,
) -> tuple[Repository, SyncReport]:
    """Create a repository at *target*, record *url* as origin and sync."""
    if target.exists() and any(target.iterdir()):
        raise WsvcError(f"Destination {target} already exists and is not empty", ExitCode.USER_ERROR)
    repo = init_repository(target, bare=bare)
    set_value("remote.origin", url, repo.root)
    report = await _sync_async(repo, url, account, password)
    return repo, report


def _summary(report: SyncReport) -> str:
    return (
        f"{len(report.records_received)} record(s) received, {len(report.records_sent)} sent; "
        f"{report.blobs_received} blob(s) received, {report.blobs_sent} sent"
    )


# ---------------------------------------------------------------------------
# Typer entry points
# ---------------------------------------------------------------------------


def sync_cmd(
    url: Optional[str] = typer.Argument(None, help="Server URL (default: remote.origin)."),
    account: Optional[str] = typer.Option(None, "--account", help="Override auth.account."),
    password: Optional[str] = typer.Option(None, "--password", help="Override auth.password."),
    root: Optional[pathlib.Path] = typer.Option(
        None, "--root", help="Repository directory (default: discover from the cwd)."
    ),
) -> None:
    """Synchronise records with a server."""
    with cli_errors("sync"):
        repo = resolve_repo(root)
        target = url or load_config(repo.root).origin
        if not target:
            raise ConfigError("No URL given and remote.origin is not set. Run `wsvc config set remote.origin <url>`.")
        with repo.lock():
            report = asyncio.run(_sync_async(repo, target, account, password))
    typer.echo(f"✅ Synced with {target}: {_summary(report)}")
    if report.head_changed:
        typer.echo(f"HEAD is now {(report.head_after or '')[:8]}")


def clone_cmd(
    url: str = typer.Argument(..., help="Server URL to clone from."),
    directory: Optional[pathlib.Path] = typer.Argument(None, help="Target directory."),
    bare: bool = typer.Option(False, "--bare", help="Create a bare clone with no workspace."),
    account: Optional[str] = typer.Option(None, "--account", help="Account for the handshake."),
    password: Optional[str] = typer.Option(None, "--password", help="Password for the handshake."),
) -> None:
    """Clone a repository from a server."""
    target = (directory or pathlib.Path(_derive_directory_name(url))).resolve()
    with cli_errors("clone"):
        repo, report = asyncio.run(_clone_async(url, target, bare, account, password))
    typer.echo(f"✅ Cloned {url} into {repo.workspace or repo.root}: {_summary(report)}")
