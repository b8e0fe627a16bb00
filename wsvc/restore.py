"""Restore engine for ``wsvc checkout``.

Rebuilds a workspace from a record by walking its root tree and writing
every blob back to disk.  Two modes:

- overwrite-and-add (default): files named by the tree are written, anything
  else already in the workspace is left untouched;
- clean (``clean=True``): entries absent from the tree are removed as well,
  so the workspace matches the record exactly.

The ``.wsvc`` metadata directory is never touched.  Checkout does not move
HEAD; only commits and the sync HEAD policy do.

When ``auto_record`` is enabled and the workspace differs from HEAD's root
tree, the current state is committed first so no work is silently lost.
"""
from __future__ import annotations

import logging
import os
import pathlib
import shutil
from dataclasses import dataclass

from wsvc.errors import CorruptObject, IoFailure
from wsvc.history import resolve_record
from wsvc.object_store import ObjectStore
from wsvc.objects import ObjectKind
from wsvc.repo import WSVC_DIR
from wsvc.snapshot import commit, hash_file, hash_workspace

logger = logging.getLogger(__name__)

AUTO_RECORD_MESSAGE = "auto record before checkout"


@dataclass
class CheckoutResult:
    """Outcome of a checkout."""

    record_id: str
    auto_record_id: str | None = None
    files_written: int = 0
    entries_removed: int = 0


def is_dirty(store: ObjectStore, workspace: pathlib.Path) -> bool:
    """Return ``True`` if *workspace* differs from HEAD's root tree.

    With an empty HEAD the workspace is dirty as soon as it holds anything.
    """
    head = store.read_head()
    if head is None:
        try:
            with os.scandir(workspace) as it:
                return any(e.name != WSVC_DIR for e in it)
        except OSError as exc:
            raise IoFailure("read directory", workspace, exc) from exc
    return hash_workspace(workspace) != store.get_record(head).root


def _remove(path: pathlib.Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _child_path(directory: pathlib.Path, tree_id: str, name: str) -> pathlib.Path:
    target = directory / name
    if os.path.dirname(os.path.normpath(target)) != os.path.normpath(directory):
        raise CorruptObject(ObjectKind.TREE.value, tree_id, f"entry {name!r} leaves its directory")
    return target


def _restore_tree(store: ObjectStore, tree_id: str, directory: pathlib.Path, clean: bool, result: CheckoutResult) -> None:
    tree = store.get_tree(tree_id)
    directory.mkdir(parents=True, exist_ok=True)

    if clean:
        wanted = {e.name for e in tree.entries}
        for child in sorted(directory.iterdir()):
            if child.name == WSVC_DIR or child.name in wanted:
                continue
            _remove(child)
            result.entries_removed += 1
            logger.debug("⚠️ Removed %s (not in tree)", child)

    for entry in tree.entries:
        target = _child_path(directory, tree_id, entry.name)
        if entry.kind is ObjectKind.TREE:
            # A symlink in place of a directory is replaced, never followed.
            if target.is_symlink() or (target.exists() and not target.is_dir()):
                _remove(target)
            _restore_tree(store, entry.id, target, clean, result)
            continue
        if target.is_symlink() or target.is_dir():
            _remove(target)
        elif target.is_file() and hash_file(target) == entry.id:
            continue
        target.write_bytes(store.get(ObjectKind.BLOB, entry.id))
        result.files_written += 1


def checkout(
    store: ObjectStore,
    workspace: pathlib.Path,
    ref: str | None = None,
    *,
    clean: bool = False,
    auto_record: bool = False,
    author: str = "",
) -> CheckoutResult:
    """Restore the record named by *ref* into *workspace*.

    Args:
        store:       Object store to read from.
        workspace:   Directory to write into.
        ref:         ``None``/``"latest"`` for HEAD, or a hex id prefix.
        clean:       Also remove workspace entries absent from the record.
        auto_record: Commit a dirty workspace before restoring.
        author:      Author for the auto-record commit.

    Raises:
        RecordNotFound / AmbiguousPrefix: *ref* does not resolve uniquely.
        ObjectNotFound / CorruptObject: the store is damaged.
        IoFailure: the workspace cannot be written.
    """
    record_id = resolve_record(store, ref)
    result = CheckoutResult(record_id=record_id)

    if auto_record and is_dirty(store, workspace):
        result.auto_record_id = commit(store, workspace, author=author, message=AUTO_RECORD_MESSAGE)
        logger.info("⚠️ Workspace was dirty — auto-recorded %s", result.auto_record_id[:8])

    record = store.get_record(record_id)
    try:
        _restore_tree(store, record.root, workspace, clean, result)
    except OSError as exc:
        raise IoFailure("restore workspace", workspace, exc) from exc
    logger.info(
        "✅ Checked out %s (%d files written, %d removed)",
        record_id[:8],
        result.files_written,
        result.entries_removed,
    )
    return result
