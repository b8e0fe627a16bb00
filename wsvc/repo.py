"""Repository creation, discovery and locking.

A repository is an :class:`~wsvc.object_store.ObjectStore` plus, unless
it is bare, the workspace directory it snapshots:

- non-bare: ``<workspace>/.wsvc/`` holds the store; the workspace is the
  directory containing ``.wsvc/``.
- bare: the store layout sits directly in the repository directory and
  there is no workspace (typical for a sync server's backing store).

Discovery walks up from the current directory looking for ``.wsvc/``.  The
``WSVC_REPO_ROOT`` environment variable overrides discovery entirely; set
it in tests to avoid ``os.chdir`` calls.
"""
from __future__ import annotations

import contextlib
import logging
import os
import pathlib
from collections.abc import Iterator
from dataclasses import dataclass

from wsvc.errors import IoFailure, RepoExistsError, RepoLockedError, RepoNotFoundError
from wsvc.object_store import ObjectStore
from wsvc.objects import WSVC_DIR

logger = logging.getLogger(__name__)

_LOCK_FILE = "LOCK"


@dataclass(frozen=True)
class Repository:
    """A store and, for non-bare repositories, its workspace."""

    store: ObjectStore
    workspace: pathlib.Path | None = None

    @property
    def bare(self) -> bool:
        return self.workspace is None

    @property
    def root(self) -> pathlib.Path:
        return self.store.root

    @contextlib.contextmanager
    def lock(self) -> Iterator[None]:
        """Hold ``<root>/LOCK`` exclusively for the duration of the block.

        Raises:
            RepoLockedError: another invocation already holds the lock.
        """
        lock_path = self.root / _LOCK_FILE
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError as exc:
            raise RepoLockedError(lock_path) from exc
        except OSError as exc:
            raise IoFailure("acquire lock", lock_path, exc) from exc
        try:
            os.write(fd, str(os.getpid()).encode("ascii"))
            os.close(fd)
            yield
        finally:
            with contextlib.suppress(FileNotFoundError):
                lock_path.unlink()


def init_repository(path: pathlib.Path, bare: bool = False) -> Repository:
    """Create a repository at *path* (created if missing).

    Raises:
        RepoExistsError: *path* already holds a repository of either layout.
    """
    path = pathlib.Path(path).resolve()
    if (path / WSVC_DIR).is_dir() or ObjectStore.is_store(path):
        raise RepoExistsError(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise IoFailure("create directory", path, exc) from exc
    if bare:
        repo = Repository(store=ObjectStore.create(path))
    else:
        repo = Repository(store=ObjectStore.create(path / WSVC_DIR), workspace=path)
    logger.info("✅ Initialised %s repository at %s", "bare" if bare else "wsvc", path)
    return repo


def open_repository(path: pathlib.Path) -> Repository:
    """Open the repository rooted exactly at *path*.

    Tries the non-bare layout first, then bare.

    Raises:
        RepoNotFoundError: neither layout is present.
    """
    path = pathlib.Path(path).resolve()
    if ObjectStore.is_store(path / WSVC_DIR):
        return Repository(store=ObjectStore(path / WSVC_DIR), workspace=path)
    if ObjectStore.is_store(path):
        return Repository(store=ObjectStore(path))
    raise RepoNotFoundError(f"Not a wsvc repository: {path}")


def find_repository(start: pathlib.Path | None = None) -> Repository | None:
    """Walk up from *start* (default cwd) looking for a repository.

    Returns ``None`` on miss; never raises.
    """
    if env_root := os.environ.get("WSVC_REPO_ROOT"):
        p = pathlib.Path(env_root).resolve()
        logger.debug("⚠️ WSVC_REPO_ROOT override active: %s", p)
        try:
            return open_repository(p)
        except RepoNotFoundError:
            return None

    origin = (start or pathlib.Path.cwd()).resolve()
    current = origin
    while True:
        if ObjectStore.is_store(current / WSVC_DIR):
            return Repository(store=ObjectStore(current / WSVC_DIR), workspace=current)
        parent = current.parent
        if parent == current:
            break
        current = parent
    if ObjectStore.is_store(origin):
        return Repository(store=ObjectStore(origin))
    return None


def require_repository(start: pathlib.Path | None = None) -> Repository:
    """Return the enclosing repository or raise :class:`RepoNotFoundError`."""
    repo = find_repository(start)
    if repo is None:
        raise RepoNotFoundError()
    return repo
