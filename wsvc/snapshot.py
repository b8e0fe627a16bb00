"""Snapshot builder for ``wsvc commit``.

Walks a workspace in lexicographic order and materializes it bottom-up:
every file becomes a blob, every directory becomes a tree built after its
children, and the outermost tree becomes the new record's root.

ID derivation contract (deterministic, no random components):

    blob_id   = sha256(file_bytes).hexdigest()
    tree_id   = sha256(canonical_tree_json).hexdigest()
    record_id = sha256(canonical_record_json).hexdigest()

Unchanged files and directories therefore hash to the same ids and are not
rewritten; no diff against the previous snapshot is needed.  The ``.wsvc``
metadata directory and symlinks are never part of a snapshot.
"""
from __future__ import annotations

import datetime
import hashlib
import logging
import os
import pathlib

from wsvc.errors import IoFailure
from wsvc.object_store import ObjectStore
from wsvc.objects import ObjectKind, Record, Tree, TreeEntry
from wsvc.repo import WSVC_DIR

logger = logging.getLogger(__name__)


def hash_file(path: pathlib.Path) -> str:
    """Return the sha256 hex digest of a file's raw bytes (its blob id).

    Reading in chunks keeps memory usage constant regardless of file size.
    """
    h = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def _scan(directory: pathlib.Path) -> list[os.DirEntry[str]]:
    """Return the snapshot-relevant entries of *directory*, sorted by name."""
    try:
        with os.scandir(directory) as it:
            entries = [e for e in it if e.name != WSVC_DIR]
    except OSError as exc:
        raise IoFailure("read directory", directory, exc) from exc
    return sorted(entries, key=lambda e: e.name)


def build_tree(directory: pathlib.Path, store: ObjectStore | None = None) -> str:
    """Return the tree id for *directory*, storing objects when *store* is given.

    With ``store=None`` nothing is written and only ids are computed, which
    is how dirty-workspace detection works.
    """
    entries: list[TreeEntry] = []
    for entry in _scan(directory):
        path = pathlib.Path(entry.path)
        if entry.is_symlink():
            logger.debug("⚠️ Skipping symlink %s", path)
            continue
        if entry.is_dir():
            entries.append(TreeEntry(entry.name, ObjectKind.TREE, build_tree(path, store)))
        elif entry.is_file():
            try:
                blob_id = store.put_blob_file(path) if store is not None else hash_file(path)
            except OSError as exc:
                raise IoFailure("read file", path, exc) from exc
            entries.append(TreeEntry(entry.name, ObjectKind.BLOB, blob_id))
        else:
            logger.debug("⚠️ Skipping special file %s", path)
    tree = Tree(entries=tuple(entries))
    if store is None:
        return tree.id
    return store.put_tree(tree)


def hash_workspace(workspace: pathlib.Path) -> str:
    """Return the root tree id a commit of *workspace* would produce."""
    return build_tree(workspace, store=None)


def commit(
    store: ObjectStore,
    workspace: pathlib.Path,
    *,
    author: str,
    message: str,
    timestamp: datetime.datetime | None = None,
) -> str:
    """Snapshot *workspace* into *store* and advance HEAD.

    Always records, even when nothing changed: an unchanged tree yields a
    record whose root equals its parent's root.

    Args:
        store:     Target object store.
        workspace: Directory to snapshot (``.wsvc`` is ignored).
        author:    Author string written into the record.
        message:   Commit message.
        timestamp: Explicit creation time; defaults to the current UTC time.

    Returns:
        The new record id (also the new HEAD).
    """
    root_id = build_tree(workspace, store)
    record = Record(
        author=author,
        message=message,
        timestamp=timestamp or datetime.datetime.now(datetime.timezone.utc),
        root=root_id,
        parent=store.read_head(),
    )
    record_id = store.put_record(record)
    store.write_head(record_id)
    logger.info("✅ Recorded %s (root %s) by %s", record_id[:8], root_id[:8], author)
    return record_id
